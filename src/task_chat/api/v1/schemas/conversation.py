from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from task_chat.api.v1.schemas.message import MessageResponse
from task_chat.domain.entities.conversation import Conversation, ConversationSummary, TaskRef
from task_chat.domain.entities.participant import Participant
from task_chat.services.presentation import asset_url, group_by_date, initial_of, sender_of


class ParticipantResponse(BaseModel):
    id: str
    name: str
    photo: str
    initial: str

    @classmethod
    def from_entity(cls, participant: Participant, asset_base_url: str) -> ParticipantResponse:
        return cls(
            id=participant.id,
            name=participant.name,
            photo=asset_url(participant.photo, asset_base_url),
            initial=initial_of(participant),
        )


class TaskResponse(BaseModel):
    id: str
    title: str
    status: str | None

    model_config = {"from_attributes": True}


class DateGroupResponse(BaseModel):
    day: date
    message_ids: list[str]


class ConversationResponse(BaseModel):
    id: str
    participants: list[ParticipantResponse]
    other_participant: ParticipantResponse | None
    task: TaskResponse | None
    messages: list[MessageResponse]
    groups: list[DateGroupResponse]

    @classmethod
    def from_entity(
        cls,
        conversation: Conversation,
        user_id: str,
        asset_base_url: str,
    ) -> ConversationResponse:
        other = conversation.other_participant(user_id)
        return cls(
            id=conversation.id,
            participants=[
                ParticipantResponse.from_entity(p, asset_base_url) for p in conversation.participants
            ],
            other_participant=(
                ParticipantResponse.from_entity(other, asset_base_url) if other else None
            ),
            task=_task(conversation.task),
            messages=[
                MessageResponse.from_entity(m, asset_base_url, sender_of(conversation, m))
                for m in conversation.messages
            ],
            groups=[
                DateGroupResponse(day=g.day, message_ids=[m.id for m in g.messages])
                for g in group_by_date(conversation.messages)
            ],
        )


class ConversationSummaryResponse(BaseModel):
    id: str
    task: TaskResponse | None
    other_participant: ParticipantResponse | None
    last_message: MessageResponse | None
    unread_count: int

    @classmethod
    def from_entity(
        cls,
        summary: ConversationSummary,
        asset_base_url: str,
    ) -> ConversationSummaryResponse:
        conversation = summary.conversation
        last = conversation.last_message
        return cls(
            id=conversation.id,
            task=_task(conversation.task),
            other_participant=(
                ParticipantResponse.from_entity(summary.other, asset_base_url)
                if summary.other
                else None
            ),
            last_message=(
                MessageResponse.from_entity(last, asset_base_url, sender_of(conversation, last))
                if last
                else None
            ),
            unread_count=summary.unread_count,
        )


class StartConversationRequest(BaseModel):
    task_id: str
    freelancer_id: str
    client_id: str | None = None
    message: str = Field(default="", max_length=5000)


def _task(task: TaskRef | None) -> TaskResponse | None:
    return TaskResponse.model_validate(task, from_attributes=True) if task else None
