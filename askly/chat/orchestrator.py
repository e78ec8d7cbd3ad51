"""ConversationOrchestrator — runs one chat turn from user input to enrichment.

A send goes through these phases:

1. Append the user message and persist it.
2. Stream the model reply into the repository mirror, fragment by fragment.
3. Persist the finished reply.
4. In the background, detect topic changes and extract memories in parallel.
5. In the background, title the session if it still has the default title.

A failure in phase 2 replaces the reply with a fixed apology. Failures in
phases 4 and 5 are logged and dropped.

The streaming reply is only staged in the repository, so the store never
sees it before phase 3. Background merges update single fields of the
latest session. They cannot commit a reply that is still streaming, and
merges touching different fields never lose each other's updates.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from askly.chat import analysis
from askly.chat.models import FALLBACK_REPLY, ConversationSession, Message, Role, new_id, utcnow
from askly.config import settings

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from typing import Any

    from askly.chat.models import Memory, MemoryExtractionItem
    from askly.chat.repository import ChatRepository
    from askly.llm.gateway import ModelGateway

logger = logging.getLogger(__name__)


class SendState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"


class SendRejectedError(RuntimeError):
    """A send was attempted while another is still running for the session."""


class SessionNotFoundError(KeyError):
    """No session exists with the requested id."""


class ConversationOrchestrator:
    """Owns the active session and the lifecycle of every send.

    Args:
        repository: Loaded (or loadable via ``start()``) chat repository.
        gateway: Model gateway used for replies and background analysis.
        history_window: Messages sent as context for a reply.
        topic_window: Messages inspected for topic changes.
        title_sample_size: Opening messages used to title a session.
    """

    def __init__(
        self,
        repository: ChatRepository,
        gateway: ModelGateway,
        *,
        history_window: int | None = None,
        topic_window: int | None = None,
        title_sample_size: int | None = None,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._history_window = (
            settings.history_window if history_window is None else history_window
        )
        self._topic_window = settings.topic_window if topic_window is None else topic_window
        self._title_sample_size = (
            settings.title_sample_size if title_sample_size is None else title_sample_size
        )
        self._states: dict[str, SendState] = {}
        self._background: set[asyncio.Task] = set()
        self._active_session_id: str | None = None
        self._memories: list[Memory] = []

    # -- Startup & session management ------------------------------------------

    async def start(self) -> ConversationSession:
        """Load stored state and activate the most recently used session.

        Creates a fresh session when the store holds none.
        """
        await self._repository.load()
        self._memories = self._repository.get_all_memories()
        sessions = self._repository.get_all_sessions()
        if sessions:
            self._active_session_id = sessions[0].id
            logger.info("Resuming session %s (%s)", sessions[0].id, sessions[0].title)
            return sessions[0]
        return await self.create_session()

    async def create_session(self) -> ConversationSession:
        """Start a new conversation with the greeting and make it active."""
        session = ConversationSession.create()
        await self._repository.save_session(session)
        self._active_session_id = session.id
        logger.info("Created session %s", session.id)
        return session

    def select_session(self, session_id: str) -> ConversationSession:
        """Make an existing session the active one."""
        session = self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self._active_session_id = session_id
        return session

    async def delete_session(self, session_id: str) -> ConversationSession | None:
        """Delete a session. Returns the new active session if the active one was removed."""
        if not await self._repository.delete_session(session_id):
            raise SessionNotFoundError(session_id)
        if self._active_session_id != session_id:
            return None
        remaining = self._repository.get_all_sessions()
        if remaining:
            self._active_session_id = remaining[0].id
            return remaining[0]
        return await self.create_session()

    async def clear_memories(self) -> int:
        count = await self._repository.clear_memories()
        self._memories = []
        return count

    async def clear_all(self) -> ConversationSession:
        """Forget every session and memory, then start over with a new session."""
        await self._repository.clear_all()
        self._memories = []
        self._active_session_id = None
        return await self.create_session()

    # -- Views -----------------------------------------------------------------

    @property
    def active_session_id(self) -> str | None:
        return self._active_session_id

    @property
    def active_session(self) -> ConversationSession | None:
        if self._active_session_id is None:
            return None
        return self._repository.get_session(self._active_session_id)

    @property
    def sessions(self) -> list[ConversationSession]:
        return self._repository.get_all_sessions()

    @property
    def memories(self) -> list[Memory]:
        return list(self._memories)

    def state(self, session_id: str) -> SendState:
        return self._states.get(session_id, SendState.IDLE)

    def is_sending(self, session_id: str) -> bool:
        return self.state(session_id) is SendState.SENDING

    # -- Send pipeline ---------------------------------------------------------

    async def send_message(self, session_id: str, text: str) -> Message:
        """Send *text* as the user's next turn and return the model's reply.

        The reply is the fallback apology when generation fails. Background
        enrichment is still running when this returns; await
        ``wait_for_background()`` to join it.

        Raises:
            ValueError: *text* is blank.
            SessionNotFoundError: The session does not exist.
            SendRejectedError: A send is already in progress for the session.
        """
        content = text.strip()
        if not content:
            msg = "Cannot send an empty message"
            raise ValueError(msg)
        session = self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if self.is_sending(session_id):
            msg = f"A message is already being sent in session {session_id}"
            raise SendRejectedError(msg)

        self._states[session_id] = SendState.SENDING
        try:
            # Phase 1: optimistic append, persisted before generation starts
            session = session.with_message(Message(role=Role.USER, content=content))
            await self._repository.save_session(session)

            # Phase 2: streaming generation
            reply_id = new_id()
            try:
                reply_text = await self._stream_reply(session, reply_id)
            except Exception:
                logger.exception("Reply generation failed for session %s", session_id)
                return await self._append_fallback(session_id, reply_id)

            # Phase 3: completion persistence
            final = await self._persist_reply(session_id, reply_id, reply_text)
            if final is None:
                return Message(id=reply_id, role=Role.MODEL, content=reply_text)

            # Phases 4 and 5 run in the background
            self._schedule_enrichment(final, content, reply_text)
            return final.find_message(reply_id)
        finally:
            self._states.pop(session_id, None)

    async def _stream_reply(self, session: ConversationSession, reply_id: str) -> str:
        """Stream the model reply into the mirror under *reply_id*."""
        session_id = session.id
        buffer: list[str] = []

        async def on_fragment(fragment: str) -> None:
            buffer.append(fragment)
            latest = self._repository.get_session(session_id)
            if latest is None:
                return
            existing = latest.find_message(reply_id)
            if existing is None:
                reply = Message(id=reply_id, role=Role.MODEL, content="".join(buffer))
            else:
                reply = existing.model_copy(update={"content": "".join(buffer)})
            self._repository.stage_session(latest.with_message(reply))

        return await self._gateway.stream_completion(
            session.recent(self._history_window),
            self._memories,
            session.topic,
            on_fragment,
        )

    async def _persist_reply(
        self, session_id: str, reply_id: str, reply_text: str
    ) -> ConversationSession | None:
        latest = self._repository.get_session(session_id)
        if latest is None:
            logger.info("Session %s was deleted while replying; discarding reply", session_id)
            return None
        existing = latest.find_message(reply_id)
        if existing is None:
            reply = Message(id=reply_id, role=Role.MODEL, content=reply_text)
        else:
            reply = existing.model_copy(update={"content": reply_text})
        latest = latest.with_message(reply)
        await self._repository.save_session(latest)
        return latest

    async def _append_fallback(self, session_id: str, reply_id: str) -> Message:
        fallback = Message(role=Role.MODEL, content=FALLBACK_REPLY)
        latest = self._repository.get_session(session_id)
        if latest is None:
            return fallback
        # Drop any partially streamed reply before apologising
        latest = latest.without_message(reply_id).with_message(fallback)
        await self._repository.save_session(latest)
        return fallback

    # -- Background enrichment -------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _schedule_enrichment(
        self, session: ConversationSession, user_text: str, reply_text: str
    ) -> None:
        self._spawn(
            self._analyse_turn(session, user_text, reply_text),
            name=f"analyse-{session.id}",
        )
        if (
            settings.title_generation_enabled
            and session.has_default_title
            and len(session.messages) >= 2
        ):
            opening = session.messages[: self._title_sample_size]
            self._spawn(self._update_title(session.id, opening), name=f"title-{session.id}")

    async def wait_for_background(self) -> None:
        """Wait until every background enrichment task has finished."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _analyse_turn(
        self, session: ConversationSession, user_text: str, reply_text: str
    ) -> None:
        await asyncio.gather(
            self._update_topic(session.id, session.recent(self._topic_window), session.topic),
            self._update_memories(user_text, reply_text),
        )

    async def _update_topic(
        self, session_id: str, recent: list[Message], current_topic: str | None
    ) -> None:
        if not settings.topic_detection_enabled:
            return
        try:
            result = await analysis.detect_topic_change(self._gateway, recent, current_topic)
            new_topic = analysis.resolve_new_topic(result)
            if new_topic is None:
                return
            latest = self._repository.get_session(session_id)
            if latest is None or latest.topic == new_topic:
                return
            await self._repository.update_session(
                session_id, topic=new_topic, last_updated=utcnow()
            )
            logger.info("Topic for session %s → %s", session_id, new_topic)
        except Exception:
            logger.exception("Topic detection failed (non-fatal)")

    async def _update_memories(self, user_text: str, reply_text: str) -> None:
        if not settings.memory_extraction_enabled:
            return
        try:
            items = await analysis.extract_memories(self._gateway, user_text, reply_text)
            await self.merge_extracted_memories(items)
        except Exception:
            logger.exception("Memory extraction failed (non-fatal)")

    async def merge_extracted_memories(self, items: list[MemoryExtractionItem]) -> int:
        """Save extracted items as memories and refresh the memory snapshot.

        Returns the number of memories actually added.
        """
        saved = 0
        for item in items:
            if await self._repository.save_memory(item.to_memory()):
                saved += 1
        self._memories = self._repository.get_all_memories()
        if saved:
            logger.info("Extracted %d memories from exchange", saved)
        return saved

    async def _update_title(self, session_id: str, opening: list[Message]) -> None:
        try:
            title = await analysis.generate_title(self._gateway, opening)
            latest = self._repository.get_session(session_id)
            if latest is None or not latest.has_default_title or title == latest.title:
                return
            await self._repository.update_session(session_id, title=title, last_updated=utcnow())
            logger.info("Titled session %s: %s", session_id, title)
        except Exception:
            logger.exception("Title generation failed (non-fatal)")
