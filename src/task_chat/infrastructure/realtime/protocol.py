"""Realtime channel envelope: ``{"type": ..., "data": {...}}`` both ways."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel

# Backend -> gateway
EVENT_MESSAGE = "message"
EVENT_MESSAGE_STATUS = "messageStatus"
EVENT_PONG = "pong"

# Gateway -> backend
EVENT_JOIN = "join"
EVENT_LEAVE = "leave"
EVENT_MARK_AS_READ = "markAsRead"
EVENT_SEND_MESSAGE = "sendMessage"


class RealtimeEnvelope(BaseModel):
    type: str
    data: dict[str, Any] = {}
