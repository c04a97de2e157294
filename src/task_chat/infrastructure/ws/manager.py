"""In-process registry of view WebSocket connections."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket

from task_chat.infrastructure.ws.protocol import WsOutbound

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks view WebSocket connections per principal."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}

    @property
    def connection_count(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    async def connect(self, ws: WebSocket, principal_key: str) -> None:
        await ws.accept()
        self._connections.setdefault(principal_key, set()).add(ws)
        logger.debug("WS connected: %s (total=%d)", principal_key, self.connection_count)

    def disconnect(self, ws: WebSocket, principal_key: str) -> None:
        conns = self._connections.get(principal_key)
        if conns:
            conns.discard(ws)
            if not conns:
                del self._connections[principal_key]
        logger.debug("WS disconnected: %s", principal_key)

    async def send(self, ws: WebSocket, event_type: str, data: dict[str, Any]) -> bool:
        """Send one envelope. Returns False if the socket is gone."""
        raw = WsOutbound(type=event_type, data=data).model_dump_json()
        try:
            await ws.send_text(raw)
        except Exception:
            logger.debug("WS send failed (%s)", event_type, exc_info=True)
            return False
        return True
