"""ChatRepository — the single source of truth for sessions and memories.

Holds an in-process mirror of everything in the key-value store. Reads are
served from the mirror; every write replaces a whole record, is written
through to the store before returning, and is announced to subscribers.

The one exception is ``stage_session()``, which places a session with a
reply still streaming in into an overlay. Reads see the overlay, the store
never does. ``save_session()`` commits the finished session and drops the
overlay; ``update_session()`` changes single fields of both the committed
record and the overlay without committing staged messages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter, ValidationError

from askly.chat.models import ConversationSession, Memory
from askly.config import settings

if TYPE_CHECKING:
    from collections.abc import Callable

    from askly.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

SESSIONS_KEY = "askly_sessions"
MEMORIES_KEY = "askly_memories"

_sessions_adapter = TypeAdapter(dict[str, ConversationSession])
_memories_adapter = TypeAdapter(list[Memory])


class EventKind(StrEnum):
    SESSION_UPDATED = "session_updated"
    SESSION_DELETED = "session_deleted"
    MEMORIES_UPDATED = "memories_updated"
    CLEARED = "cleared"


@dataclass(frozen=True)
class RepositoryEvent:
    """Change notification published to subscribers.

    Attributes:
        kind: What changed.
        session_id: The affected session, for session events.
        persisted: False while the change only exists in the mirror.
    """

    kind: EventKind
    session_id: str | None = None
    persisted: bool = True


class ChatRepository:
    """In-process mirror of persisted sessions and memories.

    Construct once per process with the store to persist into, then call
    ``load()`` before use.
    """

    def __init__(self, store: KeyValueStore, memory_capacity: int | None = None) -> None:
        self._store = store
        self._capacity = (
            settings.memory_capacity if memory_capacity is None else memory_capacity
        )
        # Committed sessions, exactly what the store holds
        self._sessions: dict[str, ConversationSession] = {}
        # Sessions with a reply still streaming in; never persisted
        self._staged: dict[str, ConversationSession] = {}
        self._memories: list[Memory] = []
        self._listeners: list[Callable[[RepositoryEvent], None]] = []

    @property
    def memory_capacity(self) -> int:
        return self._capacity

    # -- Loading ---------------------------------------------------------------

    async def load(self) -> None:
        """Populate the mirror from the store. Absent or corrupt blobs load as empty."""
        self._staged = {}
        self._sessions = await self._load_blob(SESSIONS_KEY, _sessions_adapter, dict)
        self._memories = await self._load_blob(MEMORIES_KEY, _memories_adapter, list)
        logger.info(
            "Loaded %d session(s) and %d memory(ies)",
            len(self._sessions),
            len(self._memories),
        )

    async def _load_blob(self, key: str, adapter: TypeAdapter, empty: Callable):  # noqa: ANN202
        raw = await self._store.get(key)
        if raw is None:
            return empty()
        try:
            return adapter.validate_json(raw)
        except ValidationError:
            logger.exception("Failed to load %s; starting empty", key)
            return empty()

    # -- Subscriptions ---------------------------------------------------------

    def subscribe(self, listener: Callable[[RepositoryEvent], None]) -> Callable[[], None]:
        """Register *listener* for change events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: RepositoryEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Repository listener failed for %s", event.kind)

    # -- Sessions --------------------------------------------------------------

    def _current(self, session_id: str) -> ConversationSession | None:
        staged = self._staged.get(session_id)
        return staged if staged is not None else self._sessions.get(session_id)

    def get_all_sessions(self) -> list[ConversationSession]:
        """All sessions, most recently updated first, as the view shows them."""
        current = {**self._sessions, **self._staged}
        ordered = sorted(current.values(), key=lambda s: s.last_updated, reverse=True)
        return [s.model_copy(deep=True) for s in ordered]

    def get_session(self, session_id: str) -> ConversationSession | None:
        """The latest state of one session, or None if it does not exist.

        Includes a reply that is still streaming in, if any.
        """
        session = self._current(session_id)
        return session.model_copy(deep=True) if session else None

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def stage_session(self, session: ConversationSession) -> None:
        """Show *session* to readers without persisting it."""
        self._staged[session.id] = session.model_copy(deep=True)
        self._emit(RepositoryEvent(EventKind.SESSION_UPDATED, session.id, persisted=False))

    async def save_session(self, session: ConversationSession) -> None:
        """Commit *session* (full overwrite) and persist all sessions.

        Any staged overlay for the session is dropped.
        """
        self._sessions[session.id] = session.model_copy(deep=True)
        self._staged.pop(session.id, None)
        await self._persist_sessions()
        self._emit(RepositoryEvent(EventKind.SESSION_UPDATED, session.id))

    async def update_session(
        self, session_id: str, **changes: Any
    ) -> ConversationSession | None:
        """Apply field *changes* to a committed session and persist it.

        A staged overlay receives the same changes and stays staged.
        Returns the updated view, or None if the session does not exist.
        """
        committed = self._sessions.get(session_id)
        if committed is None:
            return None
        self._sessions[session_id] = committed.model_copy(update=changes)
        staged = self._staged.get(session_id)
        if staged is not None:
            self._staged[session_id] = staged.model_copy(update=changes)
        await self._persist_sessions()
        self._emit(RepositoryEvent(EventKind.SESSION_UPDATED, session_id))
        return self.get_session(session_id)

    async def delete_session(self, session_id: str) -> bool:
        """Remove a session from the mirror and the store. Returns True if it existed."""
        self._staged.pop(session_id, None)
        if self._sessions.pop(session_id, None) is None:
            return False
        await self._persist_sessions()
        logger.info("Deleted session %s", session_id)
        self._emit(RepositoryEvent(EventKind.SESSION_DELETED, session_id))
        return True

    async def _persist_sessions(self) -> None:
        await self._store.set(SESSIONS_KEY, _sessions_adapter.dump_json(self._sessions).decode())

    # -- Memories --------------------------------------------------------------

    def get_all_memories(self) -> list[Memory]:
        """All memories, highest importance first."""
        return [m.model_copy() for m in self._memories]

    async def save_memory(self, memory: Memory) -> bool:
        """Add *memory* unless one with identical content exists.

        Keeps at most ``memory_capacity`` entries, evicting the lowest
        importance first. Among equal importance, earlier entries win.

        Returns True if the memory is in the store after the call.
        """
        if any(m.content == memory.content for m in self._memories):
            logger.debug("Skipping duplicate memory: %s", memory.content[:80])
            return False

        candidates = [*self._memories, memory.model_copy()]
        # sorted() is stable, so ties keep insertion order
        kept = sorted(candidates, key=lambda m: m.importance, reverse=True)[: self._capacity]
        evicted = len(candidates) - len(kept)
        self._memories = kept
        await self._persist_memories()
        if evicted:
            logger.info("Memory store at capacity; evicted %d entry(ies)", evicted)
        self._emit(RepositoryEvent(EventKind.MEMORIES_UPDATED))
        return any(m.id == memory.id for m in kept)

    async def clear_memories(self) -> int:
        """Forget every memory. Returns the count removed."""
        count = len(self._memories)
        self._memories = []
        await self._store.delete(MEMORIES_KEY)
        logger.info("Cleared %d memories", count)
        self._emit(RepositoryEvent(EventKind.MEMORIES_UPDATED))
        return count

    async def _persist_memories(self) -> None:
        await self._store.set(MEMORIES_KEY, _memories_adapter.dump_json(self._memories).decode())

    # -- Bulk ------------------------------------------------------------------

    async def clear_all(self) -> None:
        """Remove all sessions and memories from the mirror and the store."""
        self._sessions = {}
        self._staged = {}
        self._memories = []
        await self._store.delete(SESSIONS_KEY)
        await self._store.delete(MEMORIES_KEY)
        logger.info("Cleared all sessions and memories")
        self._emit(RepositoryEvent(EventKind.CLEARED))
