"""Live state of one open conversation: history, pushes, optimistic sends, receipts."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from task_chat.application.exceptions import (
    AppError,
    ChannelError,
    SendFailedError,
    SendTimeoutError,
    SessionClosedError,
    ValidationError,
)
from task_chat.application.ports.clock import Clock, SystemClock
from task_chat.application.ports.realtime import RealtimeChannel
from task_chat.application.ports.store import ConversationStore
from task_chat.domain.entities.conversation import Conversation
from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant
from task_chat.domain.events.session_events import (
    ChannelStateChanged,
    MessageAppended,
    MessageRemoved,
    MessageUpdated,
    SessionEvent,
)
from task_chat.domain.value_objects.enums import ChannelState, MessageStatus, SessionState
from task_chat.domain.value_objects.ids import new_temp_id

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], Awaitable[None]]


class ChatSession:
    """One conversation view bound to a store and a realtime channel.

    The message sequence is append-only: entries are only ever status-bumped
    or, for optimistic sends, have their temp id swapped for the server id.
    The one exception is the rollback of a send whose persistence failed.

    Every handler runs to completion on the event loop without suspending in
    the middle of a mutation, so no locking is needed. ``close()`` bumps a
    generation counter; completions started under an older generation leave
    the state untouched.
    """

    def __init__(
        self,
        store: ConversationStore,
        channel: RealtimeChannel,
        identity: Participant,
        *,
        clock: Clock | None = None,
        listener: SessionListener | None = None,
        send_timeout: float | None = None,
        status_buffer_ttl: float = 30.0,
        foreground: bool = True,
    ) -> None:
        self._store = store
        self._channel = channel
        self._identity = identity
        self._clock = clock or SystemClock()
        self._listener = listener
        self._send_timeout = send_timeout
        self._status_buffer_ttl = timedelta(seconds=status_buffer_ttl)
        self._foreground = foreground

        self._state = SessionState.IDLE
        self._channel_state = ChannelState.DISCONNECTED
        self._generation = 0
        self._subscribed = False
        self._conversation_id: str | None = None
        self._conversation: Conversation | None = None
        self._messages: list[Message] = []
        # server id -> temp id, learned from append responses
        self._acked: dict[str, str] = {}
        # message id -> (status, received at), for ids not in the sequence yet
        self._status_buffer: dict[str, tuple[MessageStatus, datetime]] = {}

    # -- read-only view ---------------------------------------------------

    @property
    def identity(self) -> Participant:
        return self._identity

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def channel_state(self) -> ChannelState:
        return self._channel_state

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def foreground(self) -> bool:
        return self._foreground

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def snapshot(self) -> Conversation:
        if self._conversation is None:
            raise SessionClosedError("Conversation is not open")
        return replace(self._conversation, messages=tuple(self._messages))

    # -- lifecycle --------------------------------------------------------

    async def open(self, conversation_id: str) -> Conversation:
        """Load history, subscribe to live events and acknowledge unread messages."""
        if self._state is SessionState.CLOSED:
            raise SessionClosedError("Session is closed")
        if self._state is SessionState.OPEN:
            if conversation_id != self._conversation_id:
                raise ValidationError("Session is bound to another conversation")
            await self.refresh()
            # Reopening means the view is looking at the conversation again.
            self._foreground = True
            await self._acknowledge_and_report()
            return self.snapshot()

        generation = self._generation
        self._state = SessionState.OPENING
        self._conversation_id = conversation_id
        try:
            conversation = await self._store.get_conversation(conversation_id)
        except Exception:
            if generation == self._generation:
                self._state = SessionState.IDLE
            raise

        if generation != self._generation:
            raise SessionClosedError("Session closed while opening")

        self._conversation = conversation
        self._messages = list(conversation.messages)
        self._state = SessionState.OPEN

        try:
            await self._channel.subscribe(conversation_id, self)
        except ChannelError:
            if generation != self._generation:
                raise SessionClosedError("Session closed while opening") from None
            logger.warning("Realtime subscribe failed for %s", conversation_id, exc_info=True)
            self._channel_state = ChannelState.DISCONNECTED
            await self._emit(ChannelStateChanged(conversation_id, ChannelState.DISCONNECTED))
        else:
            if generation != self._generation:
                await self._safe_unsubscribe(conversation_id)
                raise SessionClosedError("Session closed while opening")
            self._subscribed = True
            self._channel_state = ChannelState.CONNECTED

        logger.debug(
            "Opened conversation %s (%d messages)", conversation_id, len(self._messages),
        )
        if self._foreground:
            receipts = self._acknowledge_unread()
            await self.mark_read([event.message.id for event in receipts])
        return self.snapshot()

    async def refresh(self) -> Conversation:
        """Merge the stored history into the live sequence without reordering it."""
        conversation_id = self._require_open()
        generation = self._generation
        if not self._subscribed:
            await self._resubscribe(conversation_id, generation)
        conversation = await self._store.get_conversation(conversation_id)
        if generation != self._generation:
            raise SessionClosedError("Session closed while refreshing")

        to_mark: list[str] = []
        for message in conversation.messages:
            if generation != self._generation:
                raise SessionClosedError("Session closed while refreshing")
            read_id = await self._ingest(message)
            if read_id is not None:
                to_mark.append(read_id)
        self._conversation = replace(
            self._conversation or conversation,
            participants=conversation.participants,
            task=conversation.task,
        )
        await self.mark_read(to_mark)
        return self.snapshot()

    async def close(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        was_subscribed = self._subscribed
        self._state = SessionState.CLOSED
        self._generation += 1
        self._subscribed = False
        self._status_buffer.clear()
        self._acked.clear()
        if was_subscribed and self._conversation_id is not None:
            await self._safe_unsubscribe(self._conversation_id)
        logger.debug("Closed conversation %s", self._conversation_id)

    async def set_foreground(self, foreground: bool) -> None:
        was_foreground = self._foreground
        self._foreground = foreground
        if foreground and not was_foreground:
            await self._acknowledge_and_report()

    # -- outgoing ---------------------------------------------------------

    async def send(self, text: str) -> Message:
        """Append an optimistic entry and persist it.

        Returns the entry as it stands once persistence succeeded (still
        ``pending`` unless the echo already arrived). On failure the entry is
        removed and ``SendFailedError`` is raised.
        """
        if not text.strip():
            raise ValidationError("Message text must not be empty")
        conversation_id = self._require_open()
        generation = self._generation

        optimistic = Message(
            id=new_temp_id(),
            conversation_id=conversation_id,
            sender_id=self._identity.id,
            text=text,
            status=MessageStatus.PENDING,
            timestamp=self._clock.now(),
        )
        self._messages.append(optimistic)
        await self._emit(MessageAppended(conversation_id, len(self._messages) - 1, optimistic))

        persist = self._store.append_message(
            conversation_id, text, client_temp_id=optimistic.id,
        )
        try:
            if self._send_timeout is not None:
                stored = await asyncio.wait_for(persist, self._send_timeout)
            else:
                stored = await persist
        except asyncio.TimeoutError as exc:
            error = SendTimeoutError(
                f"Message was not confirmed within {self._send_timeout}s",
                temp_id=optimistic.id,
            )
            return await self._rollback(optimistic, generation, error, exc)
        except Exception as exc:
            detail = exc.detail if isinstance(exc, AppError) else str(exc)
            error = SendFailedError(detail or "Failed to send message", temp_id=optimistic.id)
            return await self._rollback(optimistic, generation, error, exc)

        if generation != self._generation:
            raise SessionClosedError("Session closed before the send completed")

        index = self._find(optimistic.id)
        if index is not None and self._find(stored.id) is None:
            self._acked[stored.id] = optimistic.id
        else:
            index = self._find_reconciled(optimistic.id)

        try:
            await self._channel.send_message(conversation_id, stored)
        except ChannelError:
            logger.warning("Advisory sendMessage failed for %s", stored.id, exc_info=True)

        return self._messages[index] if index is not None else stored

    async def mark_read(self, message_ids: list[str]) -> None:
        """Emit a read receipt. Fire-and-forget: failures are logged only."""
        ids = [i for i in message_ids if i]
        if not ids or self._state is not SessionState.OPEN or self._conversation_id is None:
            return
        try:
            await self._channel.mark_as_read(self._conversation_id, ids)
        except ChannelError:
            logger.warning(
                "markAsRead failed for %s (%d ids)", self._conversation_id, len(ids), exc_info=True,
            )

    # -- channel handlers -------------------------------------------------

    async def on_message_received(self, message: Message) -> None:
        if self._state is not SessionState.OPEN or message.conversation_id != self._conversation_id:
            return
        self._purge_status_buffer()
        read_id = await self._ingest(message)
        if read_id is not None:
            await self.mark_read([read_id])

    async def on_status_update(self, message_id: str, status: MessageStatus) -> None:
        if self._state is not SessionState.OPEN:
            return
        self._purge_status_buffer()
        index = self._find(message_id)
        if index is None:
            buffered = self._status_buffer.get(message_id)
            merged = buffered[0].merge(status) if buffered else status
            self._status_buffer[message_id] = (merged, self._clock.now())
            logger.debug("Buffered %s status for unknown message %s", merged, message_id)
            return
        await self._apply_status(index, status)

    async def on_channel_state(self, state: ChannelState) -> None:
        if self._state is not SessionState.OPEN:
            return
        await self._set_channel_state(state)

    # -- internals --------------------------------------------------------

    async def _ingest(self, message: Message) -> str | None:
        """Merge one authoritative message. Returns its id if it needs a read receipt."""
        existing = self._find(message.id)
        if existing is not None:
            self._acked.pop(message.id, None)
            await self._apply_status(existing, message.status)
            return None

        conversation_id = self._conversation_id or message.conversation_id
        if message.sender_id == self._identity.id:
            index = self._match_pending(message)
            if index is not None:
                previous = self._messages[index]
                status = previous.status.merge(message.status)
                status = self._take_buffered(message.id, status)
                reconciled = replace(message, status=status, client_temp_id=previous.id)
                self._messages[index] = reconciled
                self._acked.pop(message.id, None)
                await self._emit(MessageUpdated(conversation_id, index, reconciled, previous.id))
                return None
            status = self._take_buffered(message.id, message.status)
            await self._append(replace(message, status=status))
            return None

        floor = MessageStatus.READ if self._foreground else MessageStatus.DELIVERED
        status = self._take_buffered(message.id, message.status.merge(floor))
        await self._append(replace(message, status=status))
        if self._foreground and message.status is not MessageStatus.READ:
            return message.id
        return None

    def _match_pending(self, message: Message) -> int | None:
        temp_id = self._acked.get(message.id) or message.client_temp_id
        if temp_id is not None:
            return self._find(temp_id)
        for index in range(len(self._messages) - 1, -1, -1):
            candidate = self._messages[index]
            if (
                candidate.is_optimistic
                and candidate.status is MessageStatus.PENDING
                and candidate.sender_id == self._identity.id
                and candidate.text == message.text
            ):
                return index
        return None

    async def _append(self, message: Message) -> None:
        self._acked.pop(message.id, None)
        self._messages.append(message)
        await self._emit(
            MessageAppended(message.conversation_id, len(self._messages) - 1, message),
        )

    async def _apply_status(self, index: int, status: MessageStatus) -> None:
        current = self._messages[index]
        merged = current.status.merge(status)
        if merged is current.status:
            return
        updated = replace(current, status=merged)
        self._messages[index] = updated
        await self._emit(MessageUpdated(updated.conversation_id, index, updated, updated.id))

    async def _rollback(
        self,
        optimistic: Message,
        generation: int,
        error: SendFailedError,
        cause: BaseException,
    ) -> Message:
        if generation != self._generation:
            raise SessionClosedError("Session closed before the send completed") from cause

        index = self._find(optimistic.id)
        if index is None:
            # The echo arrived first, so the backend did persist the message.
            reconciled = self._find_reconciled(optimistic.id)
            if reconciled is not None:
                logger.warning(
                    "Send reported failure after echo for %s: %s", optimistic.id, error.detail,
                )
                return self._messages[reconciled]
            raise error from cause

        del self._messages[index]
        logger.info("Rolled back message %s: %s", optimistic.id, error.detail)
        await self._emit(
            MessageRemoved(optimistic.conversation_id, optimistic.id, error.detail),
        )
        raise error from cause

    async def _acknowledge_and_report(self) -> None:
        if self._state is not SessionState.OPEN:
            return
        receipts = self._acknowledge_unread()
        for event in receipts:
            await self._emit(event)
        await self.mark_read([event.message.id for event in receipts])

    def _acknowledge_unread(self) -> list[MessageUpdated]:
        """Mark every foreign unread message read locally; return the changes."""
        changes: list[MessageUpdated] = []
        for index, message in enumerate(self._messages):
            if message.sender_id == self._identity.id or message.status is MessageStatus.READ:
                continue
            updated = replace(message, status=MessageStatus.READ)
            self._messages[index] = updated
            changes.append(MessageUpdated(updated.conversation_id, index, updated, updated.id))
        return changes

    def _take_buffered(self, message_id: str, status: MessageStatus) -> MessageStatus:
        buffered = self._status_buffer.pop(message_id, None)
        return status.merge(buffered[0]) if buffered else status

    def _purge_status_buffer(self) -> None:
        if not self._status_buffer:
            return
        cutoff = self._clock.now() - self._status_buffer_ttl
        expired = [mid for mid, (_, at) in self._status_buffer.items() if at < cutoff]
        for mid in expired:
            del self._status_buffer[mid]
        if expired:
            logger.debug("Dropped %d stale status updates", len(expired))

    def _find(self, message_id: str) -> int | None:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].id == message_id:
                return index
        return None

    def _find_reconciled(self, temp_id: str) -> int | None:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].client_temp_id == temp_id:
                return index
        return None

    def _require_open(self) -> str:
        if self._state is not SessionState.OPEN or self._conversation_id is None:
            raise SessionClosedError("Conversation is not open")
        return self._conversation_id

    async def _set_channel_state(self, state: ChannelState) -> None:
        if state is self._channel_state:
            return
        self._channel_state = state
        if self._conversation_id is not None:
            await self._emit(ChannelStateChanged(self._conversation_id, state))

    async def _resubscribe(self, conversation_id: str, generation: int) -> None:
        try:
            await self._channel.subscribe(conversation_id, self)
        except ChannelError as exc:
            logger.debug("Realtime resubscribe for %s failed: %s", conversation_id, exc.detail)
            return
        if generation != self._generation:
            await self._safe_unsubscribe(conversation_id)
            raise SessionClosedError("Session closed while refreshing")
        self._subscribed = True
        await self._set_channel_state(ChannelState.CONNECTED)

    async def _safe_unsubscribe(self, conversation_id: str) -> None:
        try:
            await self._channel.unsubscribe(conversation_id, self)
        except ChannelError:
            logger.warning("Realtime unsubscribe failed for %s", conversation_id, exc_info=True)

    async def _emit(self, event: SessionEvent) -> None:
        if self._listener is not None:
            await self._listener(event)
