from __future__ import annotations

from typing import Protocol

from task_chat.domain.entities.message import Message
from task_chat.domain.value_objects.enums import ChannelState, MessageStatus


class ChannelHandlers(Protocol):
    async def on_message_received(self, message: Message) -> None: ...
    async def on_status_update(self, message_id: str, status: MessageStatus) -> None: ...
    async def on_channel_state(self, state: ChannelState) -> None: ...


class RealtimeChannel(Protocol):
    async def subscribe(self, conversation_id: str, handlers: ChannelHandlers) -> None:
        """Route events for conversation_id to handlers. Safe to call again."""
        ...

    async def unsubscribe(self, conversation_id: str, handlers: ChannelHandlers) -> None: ...

    async def mark_as_read(self, conversation_id: str, message_ids: list[str]) -> None: ...

    async def send_message(self, conversation_id: str, message: Message) -> None:
        """Advisory echo of a persisted message."""
        ...
