from __future__ import annotations

from enum import StrEnum


class MessageStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def merge(self, other: MessageStatus) -> MessageStatus:
        """Highest status wins."""
        return other if other.rank > self.rank else self


_STATUS_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


class SessionState(StrEnum):
    IDLE = "idle"
    OPENING = "opening"
    OPEN = "open"
    CLOSED = "closed"


class ChannelState(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
