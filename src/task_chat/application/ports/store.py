from __future__ import annotations

from typing import Protocol

from task_chat.application.dto.conversation import StartConversationDTO
from task_chat.domain.entities.conversation import Conversation
from task_chat.domain.entities.message import Message


class ConversationStore(Protocol):
    async def get_conversation(self, conversation_id: str) -> Conversation: ...

    async def append_message(
        self,
        conversation_id: str,
        text: str,
        *,
        client_temp_id: str | None = None,
    ) -> Message:
        """Persist a message and return the authoritative copy."""
        ...

    async def list_conversations(self) -> list[Conversation]: ...

    async def list_conversations_with_unread(self) -> list[tuple[Conversation, int | None]]:
        """Conversations paired with the backend unread counter, when it reports one."""
        ...

    async def start_conversation(self, dto: StartConversationDTO) -> Conversation: ...
