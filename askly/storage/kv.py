"""Key-value stores holding serialized session and memory blobs.

Two backends share one async interface:

- ``SQLiteStore``: durable, one ``kv_store`` table via ``aiosqlite``.
- ``InMemoryStore``: process-local dict, for tests and ephemeral runs.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import aiosqlite

from askly.config import settings

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class KeyValueStore(Protocol):
    """String keys to opaque string blobs."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> bool: ...


class InMemoryStore:
    """Dict-backed store. Nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class SQLiteStore:
    """Persists blobs in a local SQLite file.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = settings.database_path if db_path is None else db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    # -- Operations ------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        """Fetch the blob stored under *key*, or None if absent."""
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row[0] if row else None
        finally:
            await db.close()

    async def set(self, key: str, value: str) -> None:
        """Insert or overwrite the blob under *key*."""
        now = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, now),
            )
            await db.commit()
            logger.debug("Wrote %s (%d bytes)", key, len(value))
        finally:
            await db.close()

    async def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if a row was deleted."""
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()
