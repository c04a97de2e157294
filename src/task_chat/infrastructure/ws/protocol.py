"""WebSocket message envelope models between the view and the gateway."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class WsInbound(BaseModel):
    """View → Gateway."""

    type: str  # open | message.send | mark_read | focus | close | inbox.open | inbox.close | ping
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Gateway → View."""

    type: str  # conversation.snapshot | message.* | channel.state | inbox.* | error | pong
    data: dict[str, Any] = {}
