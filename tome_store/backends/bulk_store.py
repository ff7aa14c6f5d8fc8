"""
tome_store/backends/bulk_store.py -- Large-capacity asynchronous store.

The bulk store plays the part of the browser's IndexedDB: a durable
key/value table with no practical size limit, reached only through
awaitable calls.  It is backed by a single SQLite database driven by
``aiosqlite``, opened lazily on first use.

Every call suspends the caller until its transaction has committed.  When
the database cannot be opened (disabled in config, bad path, locked file)
the store degrades: reads resolve to ``MISSING`` and writes to ``False``.
Nothing here raises into the caller.

Usage::

    from tome_store.backends.bulk_store import BulkStore

    store = BulkStore("/path/to/tome_of_secrets.db")
    await store.write("completedQuests", [...])
    quests = await store.read("completedQuests", default=[])
    await store.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from tome_store.backends.base import MISSING
from tome_store.utils import now_iso

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS state (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT
);
"""

_DB_ERRORS = (OSError, sqlite3.Error)


class BulkStore:
    """aiosqlite-backed key/value store.

    Parameters
    ----------
    path : str or pathlib.Path
        Database file.  ``":memory:"`` gives a throwaway database.
    enabled : bool
        ``False`` behaves like a browser with IndexedDB switched off.
    """

    def __init__(self, path, *, enabled: bool = True):
        self.path = str(path) if path == ":memory:" else Path(path)
        self.enabled = enabled
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._open_failed = False

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _connection(self) -> aiosqlite.Connection | None:
        """Open the database once.  Returns None when it is unusable."""
        if not self.enabled or self._open_failed:
            return None
        if self._conn is not None:
            return self._conn

        conn = None
        try:
            if isinstance(self.path, Path):
                os.makedirs(self.path.parent, exist_ok=True)
            conn = await aiosqlite.connect(str(self.path))
            await conn.executescript(_SCHEMA_SQL)
            await conn.commit()
        except _DB_ERRORS as exc:
            self._open_failed = True
            logger.warning("Bulk store %s unavailable: %s", self.path, exc)
            if conn is not None:
                try:
                    await conn.close()
                except _DB_ERRORS:
                    pass
            return None

        self._conn = conn
        logger.debug("Opened bulk store at %s", self.path)
        return conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def available(self) -> bool:
        """False once the store is known to be unusable."""
        return self.enabled and not self._open_failed

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                try:
                    await self._conn.close()
                except _DB_ERRORS as exc:
                    logger.warning("Error closing bulk store %s: %s", self.path, exc)
                self._conn = None

    # ------------------------------------------------------------------
    # Key/value API
    # ------------------------------------------------------------------

    async def read(self, key: str, default: Any = MISSING) -> Any:
        """Return the stored value for *key*, or *default*."""
        async with self._lock:
            conn = await self._connection()
            if conn is None:
                return default
            try:
                cursor = await conn.execute("SELECT value FROM state WHERE key = ?", (key,))
                row = await cursor.fetchone()
                await cursor.close()
            except _DB_ERRORS as exc:
                logger.warning("Failed to read %r from bulk store: %s", key, exc)
                return default

        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Corrupt bulk store value for %r: %s", key, exc)
            return default

    async def write(self, key: str, value: Any) -> bool:
        """Store *value* under *key* in one committed transaction."""
        # Serialise before suspending so that later mutation of *value* by
        # the caller cannot leak into what gets stored.
        try:
            text = json.dumps(value, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            logger.error("Cannot serialise value for bulk store key %r: %s", key, exc)
            return False

        async with self._lock:
            conn = await self._connection()
            if conn is None:
                return False
            try:
                await conn.execute(
                    "INSERT INTO state (key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                    "updated_at = excluded.updated_at",
                    (key, text, now_iso()),
                )
                await conn.commit()
            except _DB_ERRORS as exc:
                logger.error("Failed to write %r to bulk store: %s", key, exc)
                return False
        return True

    async def delete(self, key: str) -> bool:
        """Remove *key*.  Returns True if a row was deleted."""
        async with self._lock:
            conn = await self._connection()
            if conn is None:
                return False
            try:
                cursor = await conn.execute("DELETE FROM state WHERE key = ?", (key,))
                deleted = cursor.rowcount
                await cursor.close()
                await conn.commit()
            except _DB_ERRORS as exc:
                logger.error("Failed to delete %r from bulk store: %s", key, exc)
                return False
        return deleted > 0

    async def keys(self) -> list[str]:
        async with self._lock:
            conn = await self._connection()
            if conn is None:
                return []
            try:
                cursor = await conn.execute("SELECT key FROM state ORDER BY key")
                rows = await cursor.fetchall()
                await cursor.close()
            except _DB_ERRORS as exc:
                logger.warning("Failed to list bulk store keys: %s", exc)
                return []
        return [row[0] for row in rows]

    def __repr__(self) -> str:
        return f"BulkStore({str(self.path)!r}, enabled={self.enabled})"
