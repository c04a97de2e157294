"""RealtimeChannel over a single WebSocket to the marketplace backend."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError as PydanticValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from task_chat.application.exceptions import AppError, ChannelError
from task_chat.application.ports.realtime import ChannelHandlers
from task_chat.domain.entities.message import Message
from task_chat.domain.value_objects.enums import ChannelState, MessageStatus
from task_chat.infrastructure.http.mappers import message_to_document, parse_message
from task_chat.infrastructure.realtime.protocol import (
    EVENT_JOIN,
    EVENT_LEAVE,
    EVENT_MARK_AS_READ,
    EVENT_MESSAGE,
    EVENT_MESSAGE_STATUS,
    EVENT_PONG,
    EVENT_SEND_MESSAGE,
    RealtimeEnvelope,
)

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class WebSocketRealtimeChannel:
    """Implements application.ports.realtime.RealtimeChannel.

    One socket per caller, shared by every conversation that caller has open.
    Inbound events are routed to the handlers subscribed to the event's
    conversation; a background reader task owns the receive side.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        heartbeat_seconds: float | None = 30.0,
        connector: Connector | None = None,
    ) -> None:
        separator = "&" if "?" in url else "?"
        self._url = f"{url}{separator}{urlencode({'token': token})}"
        self._heartbeat_seconds = heartbeat_seconds
        self._connector = connector or self._default_connect
        self._handlers: dict[str, list[ChannelHandlers]] = {}
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def subscribe(self, conversation_id: str, handlers: ChannelHandlers) -> None:
        await self.ensure_connected()
        subscribed = self._handlers.setdefault(conversation_id, [])
        added = handlers not in subscribed
        if added:
            subscribed.append(handlers)
        try:
            await self._send(EVENT_JOIN, {"conversationId": conversation_id})
        except ChannelError:
            if added:
                self._remove_handlers(conversation_id, handlers)
            raise

    async def unsubscribe(self, conversation_id: str, handlers: ChannelHandlers) -> None:
        if self._remove_handlers(conversation_id, handlers):
            return
        if self.connected:
            await self._send(EVENT_LEAVE, {"conversationId": conversation_id})
        if not self._handlers:
            await self.close()

    async def mark_as_read(self, conversation_id: str, message_ids: list[str]) -> None:
        await self._send(
            EVENT_MARK_AS_READ,
            {"conversationId": conversation_id, "messageIds": message_ids},
        )

    async def send_message(self, conversation_id: str, message: Message) -> None:
        await self._send(
            EVENT_SEND_MESSAGE,
            {"conversationId": conversation_id, "message": message_to_document(message)},
        )

    async def ensure_connected(self) -> None:
        """Connect if needed; after a reconnect, rejoin every subscribed conversation."""
        async with self._connect_lock:
            if self._ws is not None:
                return
            try:
                self._ws = await self._connector(self._url)
            except (OSError, WebSocketException) as exc:
                raise ChannelError(f"Realtime channel unavailable: {exc}") from exc
            self._reader = asyncio.create_task(self._listen(self._ws), name="realtime-channel-reader")
            logger.info("Realtime channel connected")

        for conversation_id in list(self._handlers):
            await self._send(EVENT_JOIN, {"conversationId": conversation_id})
        await self._broadcast_state(ChannelState.CONNECTED)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                logger.debug("Error closing realtime socket", exc_info=True)
            logger.info("Realtime channel closed")

    def _remove_handlers(self, conversation_id: str, handlers: ChannelHandlers) -> bool:
        """Drop one registration; True while others remain for the conversation."""
        subscribed = self._handlers.get(conversation_id, [])
        if handlers in subscribed:
            subscribed.remove(handlers)
        if subscribed:
            return True
        self._handlers.pop(conversation_id, None)
        return False

    async def _default_connect(self, url: str) -> Any:
        return await websockets.connect(url, ping_interval=self._heartbeat_seconds)

    async def _send(self, event_type: str, data: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise ChannelError("Realtime channel is not connected")
        raw = RealtimeEnvelope(type=event_type, data=data).model_dump_json()
        try:
            await ws.send(raw)
        except ConnectionClosed as exc:
            raise ChannelError(f"Realtime channel closed: {exc}") from exc

    async def _listen(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    await self._dispatch(raw)
                except Exception:
                    logger.exception("Error processing realtime event")
        except ConnectionClosed as exc:
            logger.info("Realtime channel dropped: %s", exc)
        finally:
            if self._ws is ws:
                self._ws = None
                await self._broadcast_state(ChannelState.DISCONNECTED)

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            envelope = RealtimeEnvelope.model_validate_json(raw)
        except PydanticValidationError:
            logger.debug("Ignoring malformed realtime frame")
            return

        data = envelope.data
        if envelope.type == EVENT_MESSAGE:
            conversation_id = str(data.get("conversationId") or "")
            if conversation_id not in self._handlers:
                return
            try:
                message = parse_message(data, conversation_id)
            except AppError as exc:
                logger.debug("Ignoring malformed message event: %s", exc.detail)
                return
            for handlers in list(self._handlers.get(conversation_id, [])):
                await handlers.on_message_received(message)

        elif envelope.type == EVENT_MESSAGE_STATUS:
            try:
                message_id = str(data["messageId"])
                status = MessageStatus(data["status"])
            except (KeyError, ValueError):
                logger.debug("Ignoring malformed status event: %s", data)
                return
            conversation_id = data.get("conversationId")
            if conversation_id:
                targets = list(self._handlers.get(str(conversation_id), []))
            else:
                targets = [h for hs in self._handlers.values() for h in hs]
            for handlers in targets:
                await handlers.on_status_update(message_id, status)

        elif envelope.type == EVENT_PONG:
            pass

        else:
            logger.debug("Ignoring realtime event %s", envelope.type)

    async def _broadcast_state(self, state: ChannelState) -> None:
        for handlers in [h for hs in self._handlers.values() for h in hs]:
            try:
                await handlers.on_channel_state(state)
            except Exception:
                logger.exception("Error delivering channel state %s", state)
