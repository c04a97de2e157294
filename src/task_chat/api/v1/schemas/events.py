"""Session events rendered as gateway → view envelopes."""
from __future__ import annotations

from typing import Any

from task_chat.api.v1.schemas.conversation import ConversationSummaryResponse
from task_chat.api.v1.schemas.message import MessageResponse
from task_chat.domain.events.session_events import (
    ChannelStateChanged,
    InboxUpdated,
    MessageAppended,
    MessageRemoved,
    MessageUpdated,
    SessionEvent,
)


def event_to_outbound(event: SessionEvent, asset_base_url: str) -> tuple[str, dict[str, Any]]:
    if isinstance(event, MessageAppended):
        return "message.appended", {
            "conversation_id": event.conversation_id,
            "index": event.index,
            "message": _message(event, asset_base_url),
        }
    if isinstance(event, MessageUpdated):
        return "message.updated", {
            "conversation_id": event.conversation_id,
            "index": event.index,
            "previous_id": event.previous_id,
            "message": _message(event, asset_base_url),
        }
    if isinstance(event, MessageRemoved):
        return "message.removed", {
            "conversation_id": event.conversation_id,
            "message_id": event.message_id,
            "reason": event.reason,
        }
    if isinstance(event, ChannelStateChanged):
        return "channel.state", {
            "conversation_id": event.conversation_id,
            "state": event.state.value,
        }
    if isinstance(event, InboxUpdated):
        return "inbox.updated", {
            "conversation": ConversationSummaryResponse.from_entity(
                event.summary, asset_base_url,
            ).model_dump(mode="json"),
        }
    raise TypeError(f"Unknown session event {type(event).__name__}")


def _message(event: MessageAppended | MessageUpdated, asset_base_url: str) -> dict[str, Any]:
    return MessageResponse.from_entity(event.message, asset_base_url).model_dump(mode="json")
