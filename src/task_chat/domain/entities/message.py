from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from task_chat.domain.value_objects.enums import MessageStatus
from task_chat.domain.value_objects.ids import is_temp_id


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    text: str
    status: MessageStatus
    timestamp: datetime
    attachments: tuple[str, ...] = field(default_factory=tuple)
    client_temp_id: str | None = None

    @property
    def is_optimistic(self) -> bool:
        return is_temp_id(self.id)
