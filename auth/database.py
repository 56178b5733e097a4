import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import sqlalchemy.types as types
from datetime import timezone
from .core.config import settings

logger = logging.getLogger(__name__)

class UTCDateTime(types.TypeDecorator):
    impl = types.DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    if url.startswith("mysql"):
        # 设置MySQL时区为UTC
        return {
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "connect_args": {"charset": "utf8mb4", "init_command": "SET time_zone = '+00:00'"},
        }
    return {"pool_pre_ping": True}

DATABASE_URL = settings.DATABASE_URL
engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    # 注册全部模型后建表
    from .models import user  # noqa: F401
    from parking import models as parking_models  # noqa: F401
    from wallet import models as wallet_models  # noqa: F401
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("database tables ready")
    except Exception:
        logger.exception("database initialisation failed")
        raise
