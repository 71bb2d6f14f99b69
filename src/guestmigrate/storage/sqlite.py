"""
SQLite-backed local key-value store.

Uses aiosqlite so reads and writes do not block the event loop. Suitable as
the on-device store for guest and account namespaces.

SQLite-specific adaptations:
- Values stored as BLOB
- Timestamps stored as TEXT in ISO 8601 format
- Uses UPSERT with ON CONFLICT syntax (SQLite 3.24+)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import aiosqlite

from guestmigrate.exceptions import StorageError
from guestmigrate.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_RECORD_KEY,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

KV_STORE_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class SQLiteKeyValueStore:
    """
    SQLite implementation of KeyValueStore.

    Every write is committed before the call returns, so a value that
    set() reported as written survives a process restart.

    Example:
        >>> async with aiosqlite.connect("local.db") as db:
        ...     store = SQLiteKeyValueStore(db)
        ...     await store.initialize()
        ...     await store.set("guest:profile", payload)
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            connection: aiosqlite database connection
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection

    async def initialize(self) -> None:
        """Create the kv_store table if it does not exist."""
        await self._connection.execute(KV_STORE_SCHEMA)
        await self._connection.commit()

    async def get(self, key: str) -> bytes | None:
        with self._tracer.span(
            "guestmigrate.kv_store.get",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_OPERATION: "SELECT", ATTR_RECORD_KEY: key},
        ):
            try:
                cursor = await self._connection.execute(
                    "SELECT value FROM kv_store WHERE key = ?",
                    (key,),
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to read {key}: {e}", key=key) from e
            return bytes(row[0]) if row else None

    async def set(self, key: str, value: bytes) -> None:
        with self._tracer.span(
            "guestmigrate.kv_store.set",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_OPERATION: "INSERT", ATTR_RECORD_KEY: key},
        ):
            try:
                await self._connection.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (key) DO UPDATE
                    SET value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, bytes(value), datetime.now(UTC).isoformat()),
                )
                await self._connection.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    async def delete(self, key: str) -> None:
        with self._tracer.span(
            "guestmigrate.kv_store.delete",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_OPERATION: "DELETE", ATTR_RECORD_KEY: key},
        ):
            try:
                await self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                await self._connection.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to delete {key}: {e}", key=key) from e


__all__ = [
    "KV_STORE_SCHEMA",
    "SQLiteKeyValueStore",
]
