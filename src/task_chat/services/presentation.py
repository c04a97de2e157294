"""Display helpers shared by the REST and WebSocket surfaces."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from task_chat.domain.entities.conversation import Conversation
from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant
from task_chat.domain.value_objects.enums import MessageStatus


@dataclass(frozen=True, slots=True)
class DateGroup:
    day: date
    messages: tuple[Message, ...]


def group_by_date(messages: Iterable[Message]) -> list[DateGroup]:
    """Split the sequence into runs of messages sent on the same calendar day.

    Sequence order is kept, so a day can appear twice if arrival order
    interleaves it.
    """
    runs: list[tuple[date, list[Message]]] = []
    for message in messages:
        day = message.timestamp.date()
        if runs and runs[-1][0] == day:
            runs[-1][1].append(message)
        else:
            runs.append((day, [message]))
    return [DateGroup(day, tuple(run)) for day, run in runs]


def asset_url(path: str, base_url: str) -> str:
    """Absolute URL for a backend-relative upload path."""
    if not path or path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def initial_of(participant: Participant | None) -> str:
    if participant is None or not participant.name:
        return "U"
    return participant.name[0].upper()


def sender_of(conversation: Conversation, message: Message) -> Participant:
    return conversation.participant(message.sender_id)


def unread_count(conversation: Conversation, user_id: str) -> int:
    return sum(
        1
        for m in conversation.messages
        if m.sender_id != user_id and m.status is not MessageStatus.READ
    )
