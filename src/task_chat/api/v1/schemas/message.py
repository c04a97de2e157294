from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant
from task_chat.services.presentation import asset_url


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    text: str
    status: str
    timestamp: datetime
    attachments: list[str]
    client_temp_id: str | None
    is_optimistic: bool
    sender_name: str | None = None

    @classmethod
    def from_entity(
        cls,
        message: Message,
        asset_base_url: str,
        sender: Participant | None = None,
    ) -> MessageResponse:
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            text=message.text,
            status=message.status.value,
            timestamp=message.timestamp,
            attachments=[asset_url(a, asset_base_url) for a in message.attachments],
            client_temp_id=message.client_temp_id,
            is_optimistic=message.is_optimistic,
            sender_name=sender.name if sender else None,
        )
