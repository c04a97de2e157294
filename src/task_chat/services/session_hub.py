"""Chat sessions opened by one view connection."""
from __future__ import annotations

import asyncio
import logging

from task_chat.application.exceptions import AppError, SessionClosedError
from task_chat.application.ports.clock import Clock
from task_chat.application.ports.realtime import RealtimeChannel
from task_chat.application.ports.store import ConversationStore
from task_chat.domain.entities.conversation import Conversation
from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant
from task_chat.domain.value_objects.enums import ChannelState, SessionState
from task_chat.services.chat_session import ChatSession, SessionListener

logger = logging.getLogger(__name__)


class SessionHub:
    """Owns at most one ChatSession per conversation for a single view."""

    def __init__(
        self,
        identity: Participant,
        store: ConversationStore,
        channel: RealtimeChannel,
        *,
        listener: SessionListener | None = None,
        clock: Clock | None = None,
        send_timeout: float | None = None,
        status_buffer_ttl: float = 30.0,
    ) -> None:
        self._identity = identity
        self._store = store
        self._channel = channel
        self._listener = listener
        self._clock = clock
        self._send_timeout = send_timeout
        self._status_buffer_ttl = status_buffer_ttl
        self._sessions: dict[str, ChatSession] = {}
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def open_conversations(self) -> list[str]:
        return list(self._sessions)

    def get(self, conversation_id: str) -> ChatSession:
        session = self._sessions.get(conversation_id)
        if session is None:
            raise SessionClosedError("Conversation is not open")
        return session

    async def open(self, conversation_id: str) -> Conversation:
        session = self._sessions.get(conversation_id)
        if session is None:
            session = ChatSession(
                self._store,
                self._channel,
                self._identity,
                clock=self._clock,
                listener=self._listener,
                send_timeout=self._send_timeout,
                status_buffer_ttl=self._status_buffer_ttl,
            )
            self._sessions[conversation_id] = session
        try:
            return await session.open(conversation_id)
        except Exception:
            if session.state is not SessionState.OPEN and self._sessions.get(conversation_id) is session:
                del self._sessions[conversation_id]
            raise

    async def send(self, conversation_id: str, text: str) -> Message:
        return await self.get(conversation_id).send(text)

    async def mark_read(self, conversation_id: str, message_ids: list[str]) -> None:
        await self.get(conversation_id).mark_read(message_ids)

    async def set_foreground(self, conversation_id: str, foreground: bool) -> None:
        await self.get(conversation_id).set_foreground(foreground)

    async def close(self, conversation_id: str) -> None:
        session = self._sessions.pop(conversation_id, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        await self.stop_refresh()
        sessions, self._sessions = list(self._sessions.values()), {}
        for session in sessions:
            await session.close()

    async def refresh_all(self) -> None:
        """Re-sync every open session with the store; reconnect the channel if it dropped."""
        sessions = [s for s in self._sessions.values() if s.state is SessionState.OPEN]
        if any(s.channel_state is ChannelState.DISCONNECTED for s in sessions):
            await self._reconnect()
        for session in sessions:
            try:
                await session.refresh()
            except SessionClosedError:
                continue
            except AppError as exc:
                logger.warning("Refresh of %s failed: %s", session.conversation_id, exc.detail)

    def start_refresh(self, interval: float) -> None:
        if interval > 0 and self._refresh_task is None:
            self._refresh_task = asyncio.create_task(
                self._refresh_loop(interval), name="session-hub-refresh",
            )

    async def stop_refresh(self) -> None:
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh_all()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Session refresh failed")

    async def _reconnect(self) -> None:
        ensure = getattr(self._channel, "ensure_connected", None)
        if ensure is None:
            return
        try:
            await ensure()
        except AppError as exc:
            logger.info("Realtime channel still unavailable: %s", exc.detail)
