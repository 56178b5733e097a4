import logging
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)

class ConnectionManager:
    def __init__(self):
        self.user_sockets: Dict[int, Set[WebSocket]] = {}
        self.lot_sockets: Dict[int, Set[WebSocket]] = {}

    async def connect(self, ws: WebSocket, user_id: int):
        self.user_sockets.setdefault(user_id, set()).add(ws)

    async def disconnect(self, ws: WebSocket):
        for s in self.user_sockets.values():
            s.discard(ws)
        for s in self.lot_sockets.values():
            s.discard(ws)

    async def subscribe_lot(self, ws: WebSocket, lot_id: int | None):
        if lot_id is None:
            return
        self.lot_sockets.setdefault(lot_id, set()).add(ws)

    async def unsubscribe_lot(self, ws: WebSocket, lot_id: int | None):
        if lot_id is None:
            return
        s = self.lot_sockets.get(lot_id)
        if s:
            s.discard(ws)

    async def broadcast_to_lot(self, lot_id: int, message: dict):
        for ws in list(self.lot_sockets.get(lot_id) or ()):
            try:
                await ws.send_json(message)
            except Exception:
                # 连接已断开
                logger.debug("dropping socket subscribed to lot %s", lot_id)
                await self.disconnect(ws)

    async def notify_space_change(self, lot_id: int, space_number: str, status, available_spaces: int):
        await self.broadcast_to_lot(lot_id, {
            "type": "space_status",
            "payload": {
                "lot_id": lot_id,
                "space_number": space_number,
                "status": getattr(status, "value", status),
                "available_spaces": available_spaces,
            },
        })

manager = ConnectionManager()
