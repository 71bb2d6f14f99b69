"""
Durable, append-only history of migration attempts.

Repositories:
    - MigrationHistoryRepository: protocol
    - InMemoryMigrationHistoryRepository: for tests and development
    - SQLiteMigrationHistoryRepository: aiosqlite-backed, on-device

Attempts are never updated or deleted once appended; listing returns the
newest attempt first (in append order).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

import aiosqlite

from guestmigrate.exceptions import MigrationStateError, StorageError
from guestmigrate.migration.models import MigrationAttempt
from guestmigrate.observability import (
    ATTR_ACCOUNT_ID,
    ATTR_ATTEMPT_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    Tracer,
    create_tracer,
)
from guestmigrate.serialization import json_dumps, json_loads

logger = logging.getLogger(__name__)

MIGRATION_ATTEMPTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS migration_attempts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    attempt_id TEXT NOT NULL UNIQUE,
    account_id TEXT NOT NULL,
    success INTEGER NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT NOT NULL,
    payload TEXT NOT NULL
)
"""

MIGRATION_ATTEMPTS_INDEX = """
CREATE INDEX IF NOT EXISTS idx_migration_attempts_account
    ON migration_attempts (account_id, success)
"""


@runtime_checkable
class MigrationHistoryRepository(Protocol):
    """Append-only store of sealed MigrationAttempts."""

    async def append(self, attempt: MigrationAttempt) -> None:
        """
        Persist a sealed attempt.

        Raises:
            MigrationStateError: If an attempt with the same id already exists.
            StorageError: If the write fails.
        """
        ...

    async def list_attempts(self, account_id: str | None = None) -> list[MigrationAttempt]:
        """Return attempts, newest first, optionally for one account only."""
        ...

    async def get_latest(self, account_id: str | None = None) -> MigrationAttempt | None:
        """Return the most recent attempt, or None if there is none."""
        ...


class InMemoryMigrationHistoryRepository:
    """
    In-memory implementation of MigrationHistoryRepository.

    Example:
        >>> history = InMemoryMigrationHistoryRepository()
        >>> await history.append(attempt)
        >>> await history.get_latest("acct-1")
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._attempts: list[MigrationAttempt] = []
        self._ids: set[UUID] = set()
        self._lock = asyncio.Lock()

    async def append(self, attempt: MigrationAttempt) -> None:
        with self._tracer.span(
            "guestmigrate.history.append",
            {ATTR_ATTEMPT_ID: str(attempt.attempt_id), ATTR_ACCOUNT_ID: attempt.account_id},
        ):
            async with self._lock:
                if attempt.attempt_id in self._ids:
                    raise MigrationStateError(
                        f"Attempt {attempt.attempt_id} already recorded",
                        account_id=attempt.account_id,
                    )
                self._ids.add(attempt.attempt_id)
                self._attempts.append(attempt)

    async def list_attempts(self, account_id: str | None = None) -> list[MigrationAttempt]:
        async with self._lock:
            return [
                a
                for a in reversed(self._attempts)
                if account_id is None or a.account_id == account_id
            ]

    async def get_latest(self, account_id: str | None = None) -> MigrationAttempt | None:
        attempts = await self.list_attempts(account_id)
        return attempts[0] if attempts else None


class SQLiteMigrationHistoryRepository:
    """
    SQLite implementation of MigrationHistoryRepository.

    Stores attempts in the `migration_attempts` table.

    SQLite-specific notes:
    - UUID stored as TEXT (36 characters, hyphenated format)
    - Timestamps stored as TEXT in ISO 8601 format
    - The full attempt is kept as JSON in ``payload``
    - Append order is kept by an AUTOINCREMENT sequence column

    Example:
        >>> async with aiosqlite.connect("local.db") as db:
        ...     history = SQLiteMigrationHistoryRepository(db)
        ...     await history.initialize()
        ...     await history.append(attempt)
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the repository.

        Args:
            connection: aiosqlite database connection
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection

    async def initialize(self) -> None:
        """Create the migration_attempts table and index if missing."""
        await self._connection.execute(MIGRATION_ATTEMPTS_SCHEMA)
        await self._connection.execute(MIGRATION_ATTEMPTS_INDEX)
        await self._connection.commit()

    async def append(self, attempt: MigrationAttempt) -> None:
        with self._tracer.span(
            "guestmigrate.history.append",
            {
                ATTR_ATTEMPT_ID: str(attempt.attempt_id),
                ATTR_ACCOUNT_ID: attempt.account_id,
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_OPERATION: "INSERT",
            },
        ):
            try:
                await self._connection.execute(
                    """
                    INSERT INTO migration_attempts
                        (attempt_id, account_id, success, started_at, finished_at, payload)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(attempt.attempt_id),
                        attempt.account_id,
                        1 if attempt.success else 0,
                        attempt.started_at.isoformat(),
                        attempt.finished_at.isoformat(),
                        json_dumps(attempt.to_dict()),
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                raise MigrationStateError(
                    f"Attempt {attempt.attempt_id} already recorded",
                    account_id=attempt.account_id,
                ) from e
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Failed to record attempt {attempt.attempt_id}: {e}",
                    account_id=attempt.account_id,
                ) from e

    async def list_attempts(self, account_id: str | None = None) -> list[MigrationAttempt]:
        span_attributes: dict[str, Any] = {
            ATTR_DB_SYSTEM: "sqlite",
            ATTR_DB_OPERATION: "SELECT",
        }
        if account_id:
            span_attributes[ATTR_ACCOUNT_ID] = account_id

        with self._tracer.span("guestmigrate.history.list_attempts", span_attributes):
            try:
                if account_id is None:
                    cursor = await self._connection.execute(
                        "SELECT payload FROM migration_attempts ORDER BY seq DESC"
                    )
                else:
                    cursor = await self._connection.execute(
                        """
                        SELECT payload FROM migration_attempts
                        WHERE account_id = ?
                        ORDER BY seq DESC
                        """,
                        (account_id,),
                    )
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to read migration history: {e}") from e
            return [MigrationAttempt.from_dict(json_loads(row[0])) for row in rows]

    async def get_latest(self, account_id: str | None = None) -> MigrationAttempt | None:
        attempts = await self.list_attempts(account_id)
        return attempts[0] if attempts else None


__all__ = [
    "MIGRATION_ATTEMPTS_SCHEMA",
    "MigrationHistoryRepository",
    "InMemoryMigrationHistoryRepository",
    "SQLiteMigrationHistoryRepository",
]
