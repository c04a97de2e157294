from __future__ import annotations

import logging
from dataclasses import replace
from typing import Awaitable, Callable, Protocol

from task_chat.application.dto.principal import Principal
from task_chat.application.exceptions import ChannelError, SessionClosedError
from task_chat.application.ports.realtime import RealtimeChannel
from task_chat.domain.entities.conversation import Conversation, ConversationSummary
from task_chat.domain.entities.message import Message
from task_chat.domain.events.session_events import InboxUpdated, SessionEvent
from task_chat.domain.value_objects.enums import ChannelState, MessageStatus
from task_chat.services.presentation import unread_count

logger = logging.getLogger(__name__)

InboxListener = Callable[[SessionEvent], Awaitable[None]]


class InboxSource(Protocol):
    async def list_conversations_with_unread(self) -> list[tuple[Conversation, int | None]]: ...


async def list_inbox(principal: Principal, store: InboxSource) -> list[ConversationSummary]:
    """Conversations of the caller, most recently active first.

    The backend's unread counter wins when present; otherwise unread is
    counted from the history.
    """
    return await _load_summaries(principal.user_id, store)


async def _load_summaries(user_id: str, store: InboxSource) -> list[ConversationSummary]:
    rows = await store.list_conversations_with_unread()
    summaries = [
        ConversationSummary(
            conversation=conversation,
            other=conversation.other_participant(user_id),
            unread_count=unread if unread is not None else unread_count(conversation, user_id),
        )
        for conversation, unread in rows
    ]
    summaries.sort(key=_last_activity, reverse=True)
    return summaries


def _last_activity(summary: ConversationSummary) -> float:
    last = summary.conversation.last_message
    return last.timestamp.timestamp() if last is not None else 0.0


class LiveInbox:
    """The caller's inbox, kept current from realtime pushes.

    Subscribes to every listed conversation on the shared channel. A foreign
    message bumps the row's unread count; a foreign message turning ``read``
    lowers it again. Every change is reported as ``InboxUpdated``.
    """

    def __init__(
        self,
        user_id: str,
        store: InboxSource,
        channel: RealtimeChannel,
        *,
        listener: InboxListener | None = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._channel = channel
        self._listener = listener
        self._rows: dict[str, ConversationSummary] = {}
        self._subscribed: set[str] = set()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def summaries(self) -> list[ConversationSummary]:
        return sorted(self._rows.values(), key=_last_activity, reverse=True)

    async def open(self) -> list[ConversationSummary]:
        """Load (or reload) the inbox and subscribe to conversations not yet followed."""
        self._open = True
        summaries = await _load_summaries(self._user_id, self._store)
        if not self._open:
            raise SessionClosedError("Inbox closed while loading")
        self._rows = {s.conversation.id: s for s in summaries}

        for conversation_id in list(self._rows):
            if conversation_id in self._subscribed:
                continue
            try:
                await self._channel.subscribe(conversation_id, self)
            except ChannelError as exc:
                logger.warning("Inbox subscribe failed for %s: %s", conversation_id, exc.detail)
                break
            if not self._open:
                await self._safe_unsubscribe(conversation_id)
                raise SessionClosedError("Inbox closed while loading")
            self._subscribed.add(conversation_id)
        return self.summaries()

    async def close(self) -> None:
        self._open = False
        subscribed, self._subscribed = self._subscribed, set()
        for conversation_id in subscribed:
            await self._safe_unsubscribe(conversation_id)
        self._rows.clear()

    # -- channel handlers -------------------------------------------------

    async def on_message_received(self, message: Message) -> None:
        row = self._rows.get(message.conversation_id)
        if not self._open or row is None:
            return
        for index, existing in enumerate(row.conversation.messages):
            if existing.id == message.id:
                await self._update_status(row, index, message.status)
                return

        unread = row.unread_count
        if message.sender_id != self._user_id and message.status is not MessageStatus.READ:
            unread += 1
        conversation = replace(row.conversation, messages=(*row.conversation.messages, message))
        await self._replace(replace(row, conversation=conversation, unread_count=unread))

    async def on_status_update(self, message_id: str, status: MessageStatus) -> None:
        if not self._open:
            return
        for row in list(self._rows.values()):
            for index, existing in enumerate(row.conversation.messages):
                if existing.id == message_id:
                    await self._update_status(row, index, status)
                    return

    async def on_channel_state(self, state: ChannelState) -> None:
        logger.debug("Inbox channel %s", state)

    # -- internals --------------------------------------------------------

    async def _update_status(self, row: ConversationSummary, index: int, status: MessageStatus) -> None:
        current = row.conversation.messages[index]
        merged = current.status.merge(status)
        if merged is current.status:
            return
        messages = list(row.conversation.messages)
        messages[index] = replace(current, status=merged)
        unread = row.unread_count
        if current.sender_id != self._user_id and merged is MessageStatus.READ:
            unread = max(unread - 1, 0)
        conversation = replace(row.conversation, messages=tuple(messages))
        await self._replace(replace(row, conversation=conversation, unread_count=unread))

    async def _replace(self, summary: ConversationSummary) -> None:
        self._rows[summary.conversation.id] = summary
        if self._listener is not None:
            await self._listener(InboxUpdated(summary))

    async def _safe_unsubscribe(self, conversation_id: str) -> None:
        try:
            await self._channel.unsubscribe(conversation_id, self)
        except ChannelError:
            logger.warning("Inbox unsubscribe failed for %s", conversation_id, exc_info=True)
