"""ConversationStore backed by the marketplace REST API."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from task_chat.application.dto.conversation import StartConversationDTO
from task_chat.application.exceptions import (
    ConflictError,
    ForbiddenError,
    MalformedPayloadError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from task_chat.domain.entities.conversation import Conversation
from task_chat.domain.entities.message import Message
from task_chat.infrastructure.http.mappers import (
    parse_append_response,
    parse_conversation,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class HttpConversationStore:
    """Implements application.ports.store.ConversationStore.

    One instance per caller: it carries that caller's bearer token. The
    ``httpx.AsyncClient`` is shared and owned by the application lifespan.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        *,
        request_id: str | None = None,
    ) -> None:
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"}
        if request_id:
            self._headers[REQUEST_ID_HEADER] = request_id

    async def get_conversation(self, conversation_id: str) -> Conversation:
        data = await self._request("GET", f"/api/conversations/{conversation_id}")
        conversation, _unread = parse_conversation(data)
        return conversation

    async def append_message(
        self,
        conversation_id: str,
        text: str,
        *,
        client_temp_id: str | None = None,
    ) -> Message:
        body: dict[str, Any] = {"text": text}
        if client_temp_id:
            body["clientTempId"] = client_temp_id
        data = await self._request(
            "POST", f"/api/conversations/{conversation_id}/message", json=body,
        )
        return parse_append_response(data, conversation_id, client_temp_id)

    async def list_conversations(self) -> list[Conversation]:
        return [c for c, _ in await self.list_conversations_with_unread()]

    async def list_conversations_with_unread(self) -> list[tuple[Conversation, int | None]]:
        data = await self._request("GET", "/api/conversations")
        if not isinstance(data, list):
            raise MalformedPayloadError("Conversation list must be a JSON array")
        return [parse_conversation(item) for item in data]

    async def start_conversation(self, dto: StartConversationDTO) -> Conversation:
        data = await self._request(
            "POST",
            "/api/conversations",
            json={
                "taskId": dto.task_id,
                "clientId": dto.client_id,
                "freelancerId": dto.freelancer_id,
                "message": dto.message,
            },
        )
        conversation, _unread = parse_conversation(data)
        return conversation

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise StoreError(f"Conversation service unreachable: {exc}") from exc

        if response.is_error:
            raise _error_for(response)

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"{method} {path} returned invalid JSON") from exc


def _error_for(response: httpx.Response) -> Exception:
    detail = _detail(response)
    code = response.status_code
    if code == 404:
        return NotFoundError(detail or "Conversation not found")
    if code in (401, 403):
        return ForbiddenError(detail or "Access denied")
    if code == 409:
        return ConflictError(detail or "Conflict")
    if code in (400, 422):
        return ValidationError(detail or "Invalid request")
    logger.warning("Backend answered %d: %s", code, detail)
    return StoreError(detail or f"Conversation service error ({code})")


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("detail") or "")
    return ""
