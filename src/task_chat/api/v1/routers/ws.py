from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Callable

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from task_chat.api.deps import get_verifier
from task_chat.api.middleware.correlation_id import new_correlation_id
from task_chat.api.v1.schemas.conversation import (
    ConversationResponse,
    ConversationSummaryResponse,
)
from task_chat.api.v1.schemas.events import event_to_outbound
from task_chat.application.dto.principal import Principal
from task_chat.application.exceptions import (
    AppError,
    SessionClosedError,
    ValidationError,
)
from task_chat.application.ports.realtime import RealtimeChannel
from task_chat.application.ports.store import ConversationStore
from task_chat.config import settings
from task_chat.domain.events.session_events import SessionEvent
from task_chat.infrastructure.http.store import HttpConversationStore
from task_chat.infrastructure.realtime.websocket_channel import WebSocketRealtimeChannel
from task_chat.infrastructure.ws.manager import ConnectionManager
from task_chat.infrastructure.ws.protocol import WsInbound
from task_chat.services.inbox_service import LiveInbox
from task_chat.services.session_hub import SessionHub

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

manager = ConnectionManager()

StoreFactory = Callable[[Principal], ConversationStore]
ChannelFactory = Callable[[Principal], RealtimeChannel]


def get_manager() -> ConnectionManager:
    return manager


def get_store_factory(websocket: WebSocket) -> StoreFactory:
    client = websocket.app.state.http

    def _build(principal: Principal) -> ConversationStore:
        return HttpConversationStore(client, principal.token, request_id=new_correlation_id())

    return _build


def get_channel_factory() -> ChannelFactory:
    def _build(principal: Principal) -> RealtimeChannel:
        return WebSocketRealtimeChannel(
            settings.REALTIME_URL,
            principal.token,
            heartbeat_seconds=settings.WS_HEARTBEAT_SECONDS,
        )

    return _build


async def _authenticate(token: str) -> Principal | None:
    try:
        verifier = get_verifier()
        return await verifier.verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    store_factory: Annotated[StoreFactory, Depends(get_store_factory)],
    channel_factory: Annotated[ChannelFactory, Depends(get_channel_factory)],
    token: str = Query(...),
) -> None:
    principal = await _authenticate(token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    pkey = principal.principal_key
    await manager.connect(websocket, pkey)

    async def _notify(event: SessionEvent) -> None:
        event_type, data = event_to_outbound(event, settings.asset_base_url)
        await manager.send(websocket, event_type, data)

    channel = channel_factory(principal)
    store = store_factory(principal)
    hub = SessionHub(
        principal.as_participant(),
        store,
        channel,
        listener=_notify,
        send_timeout=settings.SEND_TIMEOUT_SECONDS,
        status_buffer_ttl=settings.STATUS_BUFFER_TTL_SECONDS,
    )
    inbox = LiveInbox(principal.user_id, store, channel, listener=_notify)
    hub.start_refresh(settings.CONVERSATION_REFRESH_SECONDS)
    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{pkey}",
    )
    in_flight: set[asyncio.Task[None]] = set()
    try:
        await _read_loop(websocket, principal, hub, inbox, in_flight)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", pkey)
    finally:
        heartbeat_task.cancel()
        for task in in_flight:
            task.cancel()
        await inbox.close()
        await hub.close_all()
        close_channel = getattr(channel, "close", None)
        if close_channel is not None:
            await close_channel()
        manager.disconnect(websocket, pkey)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            if not await manager.send(ws, "pong", {}):
                return
    except asyncio.CancelledError:
        pass


async def _read_loop(
    ws: WebSocket,
    principal: Principal,
    hub: SessionHub,
    inbox: LiveInbox,
    in_flight: set[asyncio.Task[None]],
) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except Exception:
            await manager.send(ws, "error", {"code": "invalid_payload"})
            continue

        if msg.type == "ping":
            await manager.send(ws, "pong", {})
            continue

        if msg.type == "inbox.open":
            await _handle_inbox_open(ws, inbox)
            continue
        if msg.type == "inbox.close":
            await inbox.close()
            continue

        conversation_id = str(msg.data.get("conversation_id") or "")
        if not conversation_id:
            await manager.send(
                ws, "error", {"code": "invalid_data", "detail": "conversation_id is required"},
            )
            continue

        try:
            if msg.type == "open":
                await _handle_open(ws, principal, hub, conversation_id)

            elif msg.type == "message.send":
                # Persistence runs beside the read loop so the view stays responsive.
                task = asyncio.create_task(
                    _handle_send(ws, hub, conversation_id, msg.data.get("text")),
                    name=f"ws-send-{conversation_id}",
                )
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)

            elif msg.type == "mark_read":
                ids = [str(i) for i in msg.data.get("message_ids") or []]
                await hub.mark_read(conversation_id, ids)

            elif msg.type == "focus":
                foreground = msg.data.get("foreground", True)
                if not isinstance(foreground, bool):
                    await _send_error(
                        ws, "invalid_data", conversation_id, "foreground must be a boolean",
                    )
                    continue
                await hub.set_foreground(conversation_id, foreground)

            elif msg.type == "close":
                await hub.close(conversation_id)

            else:
                await manager.send(ws, "error", {"code": "unknown_type", "type": msg.type})

        except SessionClosedError as exc:
            await _send_error(ws, "not_open", conversation_id, exc.detail)


async def _handle_open(
    ws: WebSocket,
    principal: Principal,
    hub: SessionHub,
    conversation_id: str,
) -> None:
    try:
        conversation = await hub.open(conversation_id)
    except AppError as exc:
        await _send_error(ws, "open_failed", conversation_id, exc.detail)
        return

    session = hub.get(conversation_id)
    snapshot = ConversationResponse.from_entity(
        conversation, principal.user_id, settings.asset_base_url,
    )
    await manager.send(
        ws,
        "conversation.snapshot",
        {
            "conversation": snapshot.model_dump(mode="json"),
            "channel_state": session.channel_state.value,
        },
    )


async def _handle_inbox_open(ws: WebSocket, inbox: LiveInbox) -> None:
    try:
        summaries = await inbox.open()
    except AppError as exc:
        await manager.send(ws, "error", {"code": "open_failed", "detail": exc.detail})
        return
    await manager.send(
        ws,
        "inbox.snapshot",
        {
            "conversations": [
                ConversationSummaryResponse.from_entity(s, settings.asset_base_url).model_dump(
                    mode="json",
                )
                for s in summaries
            ],
        },
    )


async def _handle_send(ws: WebSocket, hub: SessionHub, conversation_id: str, text: Any) -> None:
    try:
        if not isinstance(text, str):
            raise ValidationError("text must be a string")
        await hub.send(conversation_id, text)
    except SessionClosedError as exc:
        await _send_error(ws, "not_open", conversation_id, exc.detail)
    except ValidationError as exc:
        await _send_error(ws, "invalid_data", conversation_id, exc.detail)
    except AppError as exc:
        data: dict[str, Any] = {"temp_id": getattr(exc, "temp_id", "")}
        await _send_error(ws, "send_failed", conversation_id, exc.detail, **data)


async def _send_error(
    ws: WebSocket,
    code: str,
    conversation_id: str,
    detail: str,
    **extra: Any,
) -> None:
    await manager.send(
        ws, "error", {"code": code, "conversation_id": conversation_id, "detail": detail, **extra},
    )
