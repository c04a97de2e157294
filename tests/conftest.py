"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from task_chat.application.dto.conversation import StartConversationDTO
from task_chat.application.dto.principal import Principal
from task_chat.application.exceptions import NotFoundError
from task_chat.domain.entities.conversation import Conversation, TaskRef
from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant
from task_chat.domain.events.session_events import SessionEvent
from task_chat.domain.value_objects.enums import MessageStatus

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

USER_A = Participant(id="userA", name="Alice", photo="/uploads/alice.png")
USER_B = Participant(id="userB", name="Bob", photo="")


@pytest.fixture
def user_principal() -> Principal:
    return Principal(user_id="userA", token="token-a", name="Alice")


@pytest.fixture
def other_principal() -> Principal:
    return Principal(user_id="userB", token="token-b", name="Bob")


def make_message(
    message_id: str = "m1",
    *,
    sender_id: str = "userB",
    text: str = "hi",
    status: MessageStatus = MessageStatus.SENT,
    conversation_id: str = "conv1",
    timestamp: datetime | None = None,
    client_temp_id: str | None = None,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        text=text,
        status=status,
        timestamp=timestamp or T0,
        client_temp_id=client_temp_id,
    )


def make_conversation(
    *,
    conversation_id: str = "conv1",
    messages: list[Message] | None = None,
    participants: tuple[Participant, Participant] = (USER_A, USER_B),
    task: TaskRef | None = None,
) -> Conversation:
    return Conversation(
        id=conversation_id,
        participants=participants,
        messages=tuple(messages or []),
        task=task,
    )


@dataclass
class FakeClock:
    current: datetime = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass
class FakeStore:
    """In-memory ConversationStore for unit tests."""

    conversations: dict[str, Conversation] = field(default_factory=dict)
    unread: dict[str, int] = field(default_factory=dict)
    get_error: Exception | None = None
    get_gate: asyncio.Event | None = None
    append_error: Exception | None = None
    append_gate: asyncio.Event | None = None
    append_ids: list[str] = field(default_factory=list)
    appended: list[tuple[str, str, str | None]] = field(default_factory=list)
    start_error: Exception | None = None
    started: list[StartConversationDTO] = field(default_factory=list)
    sender_id: str = "userA"
    _counter: int = 0

    def add(self, conversation: Conversation, unread: int | None = None) -> Conversation:
        self.conversations[conversation.id] = conversation
        if unread is not None:
            self.unread[conversation.id] = unread
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        if self.get_gate is not None:
            await self.get_gate.wait()
        if self.get_error is not None:
            raise self.get_error
        try:
            return self.conversations[conversation_id]
        except KeyError:
            raise NotFoundError("Conversation not found") from None

    async def append_message(
        self,
        conversation_id: str,
        text: str,
        *,
        client_temp_id: str | None = None,
    ) -> Message:
        self.appended.append((conversation_id, text, client_temp_id))
        if self.append_gate is not None:
            await self.append_gate.wait()
        if self.append_error is not None:
            raise self.append_error
        self._counter += 1
        message_id = self.append_ids.pop(0) if self.append_ids else f"srv{self._counter}"
        return make_message(
            message_id,
            sender_id=self.sender_id,
            text=text,
            conversation_id=conversation_id,
            client_temp_id=client_temp_id,
        )

    async def list_conversations(self) -> list[Conversation]:
        return list(self.conversations.values())

    async def list_conversations_with_unread(self) -> list[tuple[Conversation, int | None]]:
        return [(c, self.unread.get(c.id)) for c in self.conversations.values()]

    async def start_conversation(self, dto: StartConversationDTO) -> Conversation:
        self.started.append(dto)
        if self.start_error is not None:
            raise self.start_error
        participants = (Participant(id=dto.client_id), Participant(id=dto.freelancer_id))
        return self.add(
            make_conversation(
                conversation_id=f"conv-{dto.task_id}",
                participants=participants,
                task=TaskRef(id=dto.task_id),
            )
        )


@dataclass
class FakeChannel:
    """In-memory RealtimeChannel recording everything the session emits."""

    subscriptions: dict[str, list[Any]] = field(default_factory=dict)
    unsubscribed: list[str] = field(default_factory=list)
    marked: list[tuple[str, list[str]]] = field(default_factory=list)
    sent: list[tuple[str, Message]] = field(default_factory=list)
    subscribe_error: Exception | None = None
    mark_error: Exception | None = None
    send_error: Exception | None = None
    reconnects: int = 0

    async def subscribe(self, conversation_id: str, handlers: Any) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        subscribed = self.subscriptions.setdefault(conversation_id, [])
        if handlers not in subscribed:
            subscribed.append(handlers)

    async def unsubscribe(self, conversation_id: str, handlers: Any) -> None:
        self.unsubscribed.append(conversation_id)
        subscribed = self.subscriptions.get(conversation_id, [])
        if handlers in subscribed:
            subscribed.remove(handlers)
        if not subscribed:
            self.subscriptions.pop(conversation_id, None)

    async def mark_as_read(self, conversation_id: str, message_ids: list[str]) -> None:
        if self.mark_error is not None:
            raise self.mark_error
        self.marked.append((conversation_id, list(message_ids)))

    async def send_message(self, conversation_id: str, message: Message) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((conversation_id, message))

    async def ensure_connected(self) -> None:
        self.reconnects += 1
        self.subscribe_error = None


@dataclass
class RecordingListener:
    events: list[SessionEvent] = field(default_factory=list)

    async def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
