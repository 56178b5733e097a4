# main.py
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError
from auth.database import SessionLocal, init_db
from auth.core.config import settings
from auth.core.enums import UserRole
from auth.core.security import decode_access_token
from auth.models.user import User
from auth.services.auth_service import ensure_admin_user
from auth.routers.auth_service import router as auth_router
from auth.routers.users import router as users_router
from auth.routers.admin import router as admin_router
from parking.routers import router as parking_router
from parking.reservations import expire_overdue_reservations
from wallet.routers import router as wallet_router
from realtime.ws_manager import manager

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

def _sweep_once() -> list[int]:
    db = SessionLocal()
    try:
        return expire_overdue_reservations(db)
    finally:
        db.close()

async def _expiry_loop(interval: int):
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(_sweep_once)
        except Exception:
            logger.exception("reservation expiry sweep failed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    db = SessionLocal()
    try:
        ensure_admin_user(db)
    finally:
        db.close()
    sweeper = None
    if settings.EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(_expiry_loop(settings.EXPIRY_SWEEP_INTERVAL_SECONDS))
        logger.info("reservation expiry sweep every %ss", settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
    yield
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

app = FastAPI(
    title="停车管理系统 API",
    description="车位占用、预约、计费与钱包结算的 API。",
    version="1.0.0",
    lifespan=lifespan,
)

allow_origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api_prefix = "/api/v1"
app.include_router(auth_router, prefix=api_prefix)
app.include_router(users_router, prefix=api_prefix)
app.include_router(admin_router, prefix=api_prefix)
app.include_router(parking_router, prefix=api_prefix)
app.include_router(wallet_router, prefix=api_prefix)


@app.get("/", tags=["Root"])
def read_root():
    return {"message": "欢迎使用停车管理系统 API"}

def _parse_lot_id(data: dict) -> int | None:
    lot_id = (data.get("payload") or {}).get("lot_id")
    try:
        return int(lot_id) if lot_id is not None else None
    except (TypeError, ValueError):
        return None

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    token = ws.query_params.get("token")
    if not token:
        await ws.close(code=4401)
        return
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        await ws.close(code=4401)
        return
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        role = user.role if user else None
    finally:
        db.close()
    if role is None:
        await ws.close(code=4401)
        return
    await ws.accept()
    await manager.connect(ws, user_id)
    try:
        while True:
            try:
                data = await ws.receive_json()
            except ValueError:
                await ws.send_json({"type": "error", "payload": {"code": "bad_message"}})
                continue
            t = data.get("type")
            if t == "subscribe_lot":
                if role != UserRole.ADMIN:
                    await ws.send_json({"type": "error", "payload": {"code": "forbidden"}})
                    continue
                await manager.subscribe_lot(ws, _parse_lot_id(data))
            elif t == "unsubscribe_lot":
                await manager.unsubscribe_lot(ws, _parse_lot_id(data))
            else:
                await ws.send_json({"type": "heartbeat", "payload": {"ts": data.get("ts")}})
    except WebSocketDisconnect:
        await manager.disconnect(ws)
