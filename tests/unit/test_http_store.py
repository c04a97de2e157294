from __future__ import annotations

import json

import httpx
import pytest

from task_chat.application.dto.conversation import StartConversationDTO
from task_chat.application.exceptions import (
    ConflictError,
    ForbiddenError,
    MalformedPayloadError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from task_chat.infrastructure.http.store import HttpConversationStore

CONVERSATION = {
    "_id": "conv1",
    "participants": [{"_id": "userA", "name": "Alice"}, {"_id": "userB", "name": "Bob"}],
    "messages": [
        {"_id": "m1", "sender": "userB", "text": "hi", "timestamp": "2024-05-01T12:00:00Z"},
    ],
}


def _store(handler, *, request_id=None) -> tuple[HttpConversationStore, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(
        base_url="http://backend.test", transport=httpx.MockTransport(_record),
    )
    return HttpConversationStore(client, "token-a", request_id=request_id), seen


@pytest.mark.asyncio
async def test_get_conversation_sends_bearer_and_request_id():
    store, seen = _store(lambda r: httpx.Response(200, json=CONVERSATION), request_id="rid-1")

    conversation = await store.get_conversation("conv1")

    assert conversation.id == "conv1"
    assert [m.id for m in conversation.messages] == ["m1"]
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/api/conversations/conv1"
    assert request.headers["Authorization"] == "Bearer token-a"
    assert request.headers["X-Request-ID"] == "rid-1"


@pytest.mark.asyncio
async def test_append_message_posts_text_and_temp_id():
    reply = {
        "message": {
            "_id": "srv1", "sender": "userA", "text": "hello",
            "timestamp": "2024-05-01T12:01:00Z", "clientTempId": "temp-1",
        },
    }
    store, seen = _store(lambda r: httpx.Response(201, json=reply))

    message = await store.append_message("conv1", "hello", client_temp_id="temp-1")

    assert message.id == "srv1"
    assert message.conversation_id == "conv1"
    assert seen[0].url.path == "/api/conversations/conv1/message"
    assert json.loads(seen[0].content) == {"text": "hello", "clientTempId": "temp-1"}


@pytest.mark.asyncio
async def test_list_conversations_with_unread():
    store, _ = _store(lambda r: httpx.Response(200, json=[{**CONVERSATION, "unreadCount": 2}]))

    rows = await store.list_conversations_with_unread()

    assert [(c.id, unread) for c, unread in rows] == [("conv1", 2)]


@pytest.mark.asyncio
async def test_list_conversations_rejects_non_list():
    store, _ = _store(lambda r: httpx.Response(200, json={"items": []}))

    with pytest.raises(MalformedPayloadError):
        await store.list_conversations()


@pytest.mark.asyncio
async def test_start_conversation_body():
    store, seen = _store(lambda r: httpx.Response(201, json=CONVERSATION))
    dto = StartConversationDTO(task_id="task1", client_id="userA", freelancer_id="userB", message="Hi")

    await store.start_conversation(dto)

    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/conversations"
    assert json.loads(seen[0].content) == {
        "taskId": "task1", "clientId": "userA", "freelancerId": "userB", "message": "Hi",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [
        (404, NotFoundError),
        (401, ForbiddenError),
        (403, ForbiddenError),
        (409, ConflictError),
        (400, ValidationError),
        (422, ValidationError),
        (500, StoreError),
        (503, StoreError),
    ],
)
async def test_error_statuses_map_to_app_errors(status, error):
    store, _ = _store(lambda r: httpx.Response(status, json={"message": "nope"}))

    with pytest.raises(error) as exc_info:
        await store.get_conversation("conv1")

    assert exc_info.value.detail == "nope"


@pytest.mark.asyncio
async def test_transport_failure_is_store_error():
    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store, _ = _store(_boom)

    with pytest.raises(StoreError):
        await store.get_conversation("conv1")


@pytest.mark.asyncio
async def test_invalid_json_is_malformed():
    store, _ = _store(lambda r: httpx.Response(200, text="<html>"))

    with pytest.raises(MalformedPayloadError):
        await store.get_conversation("conv1")
