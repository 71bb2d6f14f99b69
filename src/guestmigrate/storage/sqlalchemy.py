"""
SQLAlchemy-backed remote account record store.

Stores account records in the ``account_records`` table using SQLAlchemy's
async engine. Works with PostgreSQL (asyncpg) in production and SQLite
(aiosqlite) in tests; the upsert uses ON CONFLICT syntax supported by both.

Database Table:
    account_records (
        account_id TEXT, record_key TEXT, payload BYTEA/BLOB, updated_at,
        PRIMARY KEY (account_id, record_key)
    )

Usage:
    >>> engine = create_async_engine("postgresql+asyncpg://...")
    >>> remote = SQLAlchemyAccountRecordStore(engine)
    >>> await remote.initialize()
    >>> await remote.put_account_record("acct-1", "profile", payload)
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from guestmigrate.exceptions import RemoteStorageError
from guestmigrate.observability import (
    ATTR_ACCOUNT_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_RECORD_KEY,
    Tracer,
    create_tracer,
)
from guestmigrate.storage._connection import execute_with_connection

logger = logging.getLogger(__name__)

ACCOUNT_RECORDS_SCHEMA: dict[str, str] = {
    "postgresql": """
        CREATE TABLE IF NOT EXISTS account_records (
            account_id TEXT NOT NULL,
            record_key TEXT NOT NULL,
            payload BYTEA NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (account_id, record_key)
        )
    """,
    "sqlite": """
        CREATE TABLE IF NOT EXISTS account_records (
            account_id TEXT NOT NULL,
            record_key TEXT NOT NULL,
            payload BLOB NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (account_id, record_key)
        )
    """,
}


def _to_remote_error(
    exc: SQLAlchemyError,
    operation: str,
    account_id: str,
    key: str,
) -> RemoteStorageError:
    # Connection drops and timeouts surface as OperationalError or as a
    # DBAPIError flagged connection_invalidated; both are worth retrying.
    recoverable = isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    )
    return RemoteStorageError(
        f"Failed to {operation} account record: {exc.__class__.__name__}",
        account_id=account_id,
        key=key,
        recoverable=recoverable,
    )


class SQLAlchemyAccountRecordStore:
    """
    AccountRecordStore over a SQLAlchemy async engine or connection.

    Example:
        >>> remote = SQLAlchemyAccountRecordStore(engine)
        >>> payload = await remote.get_account_record("acct-1", "profile")
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn

    @property
    def _db_system(self) -> str:
        return self._conn.dialect.name

    async def initialize(self) -> None:
        """Create the account_records table for the connected dialect."""
        ddl = ACCOUNT_RECORDS_SCHEMA.get(self._db_system, ACCOUNT_RECORDS_SCHEMA["postgresql"])
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(text(ddl))

    async def get_account_record(self, account_id: str, key: str) -> bytes | None:
        with self._tracer.span(
            "guestmigrate.account_store.get_account_record",
            {
                ATTR_ACCOUNT_ID: account_id,
                ATTR_RECORD_KEY: key,
                ATTR_DB_SYSTEM: self._db_system,
                ATTR_DB_OPERATION: "SELECT",
            },
        ):
            query = text("""
                SELECT payload
                FROM account_records
                WHERE account_id = :account_id AND record_key = :record_key
            """)
            try:
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    result = await conn.execute(
                        query, {"account_id": account_id, "record_key": key}
                    )
                    row = result.fetchone()
            except SQLAlchemyError as e:
                raise _to_remote_error(e, "read", account_id, key) from e
            return bytes(row[0]) if row else None

    async def put_account_record(self, account_id: str, key: str, value: bytes) -> None:
        with self._tracer.span(
            "guestmigrate.account_store.put_account_record",
            {
                ATTR_ACCOUNT_ID: account_id,
                ATTR_RECORD_KEY: key,
                ATTR_DB_SYSTEM: self._db_system,
                ATTR_DB_OPERATION: "INSERT",
            },
        ):
            query = text("""
                INSERT INTO account_records (account_id, record_key, payload)
                VALUES (:account_id, :record_key, :payload)
                ON CONFLICT (account_id, record_key) DO UPDATE
                SET payload = excluded.payload,
                    updated_at = CURRENT_TIMESTAMP
            """)
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    await conn.execute(
                        query,
                        {"account_id": account_id, "record_key": key, "payload": bytes(value)},
                    )
            except SQLAlchemyError as e:
                raise _to_remote_error(e, "write", account_id, key) from e
            logger.debug("Stored account record %s for account %s", key, account_id)


__all__ = [
    "ACCOUNT_RECORDS_SCHEMA",
    "SQLAlchemyAccountRecordStore",
]
