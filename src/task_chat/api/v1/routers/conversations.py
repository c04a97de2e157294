from __future__ import annotations

from fastapi import APIRouter, Response, status

from task_chat.api.deps import CurrentPrincipal, StoreDep
from task_chat.api.v1.schemas.common import ErrorResponse
from task_chat.api.v1.schemas.conversation import (
    ConversationResponse,
    ConversationSummaryResponse,
    StartConversationRequest,
)
from task_chat.application.dto.conversation import StartConversationDTO
from task_chat.config import settings
from task_chat.services import conversation_service, inbox_service

router = APIRouter(
    prefix="/api/v1/chat/conversations",
    tags=["conversations"],
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)


@router.get("", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    principal: CurrentPrincipal,
    store: StoreDep,
) -> list[ConversationSummaryResponse]:
    summaries = await inbox_service.list_inbox(principal, store)
    return [
        ConversationSummaryResponse.from_entity(s, settings.asset_base_url) for s in summaries
    ]


@router.post("", response_model=ConversationResponse)
async def start_conversation(
    body: StartConversationRequest,
    principal: CurrentPrincipal,
    store: StoreDep,
    response: Response,
) -> ConversationResponse:
    dto = StartConversationDTO(
        task_id=body.task_id,
        client_id=body.client_id or principal.user_id,
        freelancer_id=body.freelancer_id,
        message=body.message,
    )
    conversation, created = await conversation_service.start_task_conversation(
        dto, principal, store,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return ConversationResponse.from_entity(
        conversation, principal.user_id, settings.asset_base_url,
    )


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    principal: CurrentPrincipal,
    store: StoreDep,
) -> ConversationResponse:
    conversation = await conversation_service.get_conversation(conversation_id, principal, store)
    return ConversationResponse.from_entity(
        conversation, principal.user_id, settings.asset_base_url,
    )
