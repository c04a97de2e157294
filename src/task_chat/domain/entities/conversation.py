from __future__ import annotations

from dataclasses import dataclass, field

from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant, unknown_participant


@dataclass(frozen=True, slots=True)
class TaskRef:
    id: str
    title: str = ""
    status: str | None = None


@dataclass(frozen=True, slots=True)
class Conversation:
    id: str
    participants: tuple[Participant, Participant]
    messages: tuple[Message, ...] = field(default_factory=tuple)
    task: TaskRef | None = None

    def participant(self, participant_id: str) -> Participant:
        for p in self.participants:
            if p.id == participant_id:
                return p
        return unknown_participant(participant_id)

    def other_participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.id != user_id:
                return p
        return None

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    """Inbox row: a conversation seen from one participant."""

    conversation: Conversation
    other: Participant | None
    unread_count: int
