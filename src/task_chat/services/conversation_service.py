from __future__ import annotations

import logging

from task_chat.application.dto.conversation import StartConversationDTO
from task_chat.application.dto.principal import Principal
from task_chat.application.exceptions import (
    ConflictError,
    ForbiddenError,
    ValidationError,
)
from task_chat.application.ports.store import ConversationStore
from task_chat.domain.entities.conversation import Conversation

logger = logging.getLogger(__name__)


async def get_conversation(
    conversation_id: str,
    principal: Principal,
    store: ConversationStore,
) -> Conversation:
    conversation = await store.get_conversation(conversation_id)
    if not principal.is_admin and all(p.id != principal.user_id for p in conversation.participants):
        raise ForbiddenError("Not a participant of this conversation")
    return conversation


async def start_task_conversation(
    dto: StartConversationDTO,
    principal: Principal,
    store: ConversationStore,
) -> tuple[Conversation, bool]:
    """Open the task conversation between client and freelancer.

    Returns (conversation, created). When the backend refuses because the
    pair already talks about this task, the existing conversation is
    returned with created=False.
    """
    if principal.user_id not in (dto.client_id, dto.freelancer_id):
        raise ForbiddenError("Only the task client or the freelancer can start this conversation")
    if dto.client_id == dto.freelancer_id:
        raise ValidationError("Client and freelancer must be different users")

    try:
        return await store.start_conversation(dto), True
    except (ConflictError, ValidationError) as exc:
        existing = await find_task_conversation(dto, store)
        if existing is None:
            raise
        logger.debug("Reusing conversation %s for task %s: %s", existing.id, dto.task_id, exc.detail)
        return existing, False


async def find_task_conversation(
    dto: StartConversationDTO,
    store: ConversationStore,
) -> Conversation | None:
    pair = {dto.client_id, dto.freelancer_id}
    for conversation in await store.list_conversations():
        if conversation.task is None or conversation.task.id != dto.task_id:
            continue
        if {p.id for p in conversation.participants} == pair:
            return conversation
    return None
