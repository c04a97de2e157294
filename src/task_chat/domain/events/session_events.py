"""Changes a ChatSession or the live inbox reports to its view."""
from __future__ import annotations

from dataclasses import dataclass

from task_chat.domain.entities.conversation import ConversationSummary
from task_chat.domain.entities.message import Message
from task_chat.domain.value_objects.enums import ChannelState


@dataclass(frozen=True, slots=True)
class MessageAppended:
    conversation_id: str
    index: int
    message: Message


@dataclass(frozen=True, slots=True)
class MessageUpdated:
    """A message changed in place: status bump or temp id replaced by the server id."""

    conversation_id: str
    index: int
    message: Message
    previous_id: str


@dataclass(frozen=True, slots=True)
class MessageRemoved:
    """An optimistic entry rolled back after a failed send."""

    conversation_id: str
    message_id: str
    reason: str


@dataclass(frozen=True, slots=True)
class ChannelStateChanged:
    conversation_id: str
    state: ChannelState


@dataclass(frozen=True, slots=True)
class InboxUpdated:
    """An inbox row changed: new message, status bump or unread count."""

    summary: ConversationSummary


SessionEvent = (
    MessageAppended | MessageUpdated | MessageRemoved | ChannelStateChanged | InboxUpdated
)
