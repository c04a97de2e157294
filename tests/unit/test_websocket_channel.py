from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

import pytest
from websockets.exceptions import ConnectionClosedError

from task_chat.application.exceptions import ChannelError
from task_chat.domain.value_objects.enums import ChannelState, MessageStatus
from task_chat.infrastructure.realtime.websocket_channel import WebSocketRealtimeChannel
from tests.conftest import make_message

_CLOSED = object()


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        if self.fail_sends:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True

    def push(self, event_type: str, data: dict) -> None:
        self._inbox.put_nowait(json.dumps({"type": event_type, "data": data}))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


@dataclass(eq=False)
class RecordingHandlers:
    messages: list = field(default_factory=list)
    statuses: list = field(default_factory=list)
    states: list = field(default_factory=list)

    async def on_message_received(self, message) -> None:
        self.messages.append(message)

    async def on_status_update(self, message_id, status) -> None:
        self.statuses.append((message_id, status))

    async def on_channel_state(self, state) -> None:
        self.states.append(state)


class Connector:
    def __init__(self) -> None:
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self.error: Exception | None = None
        self.fail_sends = False

    async def __call__(self, url: str) -> FakeSocket:
        if self.error is not None:
            raise self.error
        self.urls.append(url)
        socket = FakeSocket()
        socket.fail_sends = self.fail_sends
        self.sockets.append(socket)
        return self.sockets[-1]

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def connector() -> Connector:
    return Connector()


@pytest.fixture
def realtime(connector) -> WebSocketRealtimeChannel:
    return WebSocketRealtimeChannel("ws://backend.test/ws", "token a", connector=connector)


def _message_event(message_id="m1", conversation_id="conv1", **extra) -> dict:
    return {
        "_id": message_id,
        "conversationId": conversation_id,
        "sender": "userB",
        "text": "hi",
        "timestamp": "2024-05-01T12:00:00Z",
        **extra,
    }


@pytest.mark.asyncio
async def test_subscribe_connects_and_joins(realtime, connector):
    await realtime.subscribe("conv1", RecordingHandlers())

    assert realtime.connected
    assert connector.urls == ["ws://backend.test/ws?token=token+a"]
    assert connector.socket.sent == [{"type": "join", "data": {"conversationId": "conv1"}}]
    await realtime.close()


@pytest.mark.asyncio
async def test_message_events_route_by_conversation(realtime, connector):
    first, second = RecordingHandlers(), RecordingHandlers()
    await realtime.subscribe("conv1", first)
    await realtime.subscribe("conv2", second)

    connector.socket.push("message", _message_event("m1", "conv1", status="delivered"))
    connector.socket.push("message", _message_event("m2", "conv3"))
    await _settle()

    assert [(m.id, m.status) for m in first.messages] == [("m1", MessageStatus.DELIVERED)]
    assert second.messages == []
    await realtime.close()


@pytest.mark.asyncio
async def test_status_without_conversation_goes_to_every_subscriber(realtime, connector):
    first, second = RecordingHandlers(), RecordingHandlers()
    await realtime.subscribe("conv1", first)
    await realtime.subscribe("conv2", second)

    connector.socket.push("messageStatus", {"messageId": "m1", "status": "read"})
    connector.socket.push("messageStatus", {"messageId": "m2", "status": "delivered", "conversationId": "conv2"})
    await _settle()

    assert first.statuses == [("m1", MessageStatus.READ)]
    assert second.statuses == [("m1", MessageStatus.READ), ("m2", MessageStatus.DELIVERED)]
    await realtime.close()


@pytest.mark.asyncio
async def test_malformed_frames_are_ignored(realtime, connector):
    handlers = RecordingHandlers()
    await realtime.subscribe("conv1", handlers)

    connector.socket.push_raw("not json")
    connector.socket.push("messageStatus", {"messageId": "m1", "status": "seen"})
    connector.socket.push("message", {"conversationId": "conv1", "text": "no id"})
    connector.socket.push("message", _message_event("m9"))
    await _settle()

    assert handlers.statuses == []
    assert [m.id for m in handlers.messages] == ["m9"]
    assert realtime.connected
    await realtime.close()


@pytest.mark.asyncio
async def test_outgoing_events(realtime, connector):
    await realtime.subscribe("conv1", RecordingHandlers())

    await realtime.mark_as_read("conv1", ["m1", "m2"])
    await realtime.send_message("conv1", make_message("srv1", client_temp_id="temp-1"))

    mark, echo = connector.socket.sent[1:]
    assert mark == {"type": "markAsRead", "data": {"conversationId": "conv1", "messageIds": ["m1", "m2"]}}
    assert echo["type"] == "sendMessage"
    assert echo["data"]["message"]["_id"] == "srv1"
    assert echo["data"]["message"]["clientTempId"] == "temp-1"
    await realtime.close()


@pytest.mark.asyncio
async def test_connect_failure_raises_channel_error(realtime, connector):
    connector.error = OSError("connection refused")

    with pytest.raises(ChannelError):
        await realtime.subscribe("conv1", RecordingHandlers())
    assert not realtime.connected


@pytest.mark.asyncio
async def test_send_while_disconnected_raises(realtime):
    with pytest.raises(ChannelError):
        await realtime.mark_as_read("conv1", ["m1"])


@pytest.mark.asyncio
async def test_last_unsubscribe_leaves_and_closes(realtime, connector):
    handlers = RecordingHandlers()
    await realtime.subscribe("conv1", handlers)
    socket = connector.socket

    await realtime.unsubscribe("conv1", handlers)

    assert socket.sent[-1] == {"type": "leave", "data": {"conversationId": "conv1"}}
    assert socket.closed
    assert not realtime.connected


@pytest.mark.asyncio
async def test_drop_and_reconnect_rejoins(realtime, connector):
    handlers = RecordingHandlers()
    await realtime.subscribe("conv1", handlers)

    connector.socket.drop()
    await _settle()
    assert not realtime.connected
    assert handlers.states == [ChannelState.DISCONNECTED]

    await realtime.ensure_connected()

    assert len(connector.sockets) == 2
    assert connector.socket.sent == [{"type": "join", "data": {"conversationId": "conv1"}}]
    assert handlers.states == [ChannelState.DISCONNECTED, ChannelState.CONNECTED]
    await realtime.close()


@pytest.mark.asyncio
async def test_failed_join_does_not_keep_handlers(realtime, connector):
    handlers = RecordingHandlers()
    connector.fail_sends = True

    with pytest.raises(ChannelError):
        await realtime.subscribe("conv1", handlers)

    connector.socket.fail_sends = False
    await realtime.subscribe("conv2", RecordingHandlers())
    connector.socket.push("message", _message_event("m1", "conv1"))
    await _settle()

    assert handlers.messages == []
    await realtime.close()
