"""
Shared pytest fixtures for the guestmigrate tests.

This module provides:
- Sample data fixtures (account_id, body_metrics)
- Storage fixtures (local_store, remote_store)
- Engine fixtures (resolver, codec, engine and its components)
- SQLite fixtures (sqlite_connection)
- Helpers for seeding and reading the guest and account namespaces

All engine fixtures disable tracing; tracing is covered explicitly with
MockTracer where it matters.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable

import aiosqlite
import pytest
import pytest_asyncio

from guestmigrate.migration import MigrationConfig, MigrationEngine
from guestmigrate.migration.repositories import InMemoryMigrationHistoryRepository
from guestmigrate.namespace import KeyNamespaceResolver
from guestmigrate.records import BaseUserRecord, BodyMetricsRecord, RecordCodec
from guestmigrate.storage import InMemoryAccountRecordStore, InMemoryKeyValueStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that use a real SQLite database")


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def account_id() -> str:
    """Account identifier used by most tests."""
    return "acct-123"


@pytest.fixture
def body_metrics() -> BodyMetricsRecord:
    """The guest body metrics record from the reference scenario."""
    return BodyMetricsRecord(weight_kg=82)


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def local_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(enable_tracing=False)


@pytest.fixture
def remote_store() -> InMemoryAccountRecordStore:
    return InMemoryAccountRecordStore(enable_tracing=False)


@pytest.fixture
def history() -> InMemoryMigrationHistoryRepository:
    return InMemoryMigrationHistoryRepository(enable_tracing=False)


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """In-memory SQLite connection, closed after the test."""
    async with aiosqlite.connect(":memory:") as db:
        yield db


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def resolver() -> KeyNamespaceResolver:
    return KeyNamespaceResolver()


@pytest.fixture
def codec() -> RecordCodec:
    return RecordCodec()


@pytest.fixture
def migration_config() -> MigrationConfig:
    """Default configuration; override in a test module to customise."""
    return MigrationConfig()


@pytest.fixture
def engine(
    local_store: InMemoryKeyValueStore,
    remote_store: InMemoryAccountRecordStore,
    history: InMemoryMigrationHistoryRepository,
    migration_config: MigrationConfig,
) -> MigrationEngine:
    """A fully wired engine over in-memory backends."""
    return MigrationEngine.create(
        local_store,
        remote_store,
        history,
        migration_config,
        enable_tracing=False,
    )


# ============================================================================
# Namespace Helpers
# ============================================================================


@pytest.fixture
def seed_guest(
    local_store: InMemoryKeyValueStore,
    codec: RecordCodec,
) -> Callable[[str, BaseUserRecord], Awaitable[bytes]]:
    """Write a record into the guest namespace and return its payload."""

    async def _seed(key: str, record: BaseUserRecord) -> bytes:
        payload = codec.encode(record)
        await local_store.set(f"guest:{key}", payload)
        return payload

    return _seed


@pytest.fixture
def seed_remote(
    remote_store: InMemoryAccountRecordStore,
    codec: RecordCodec,
) -> Callable[[str, str, BaseUserRecord], Awaitable[bytes]]:
    """Write a record into the remote store and return its payload."""

    async def _seed(account: str, key: str, record: BaseUserRecord) -> bytes:
        payload = codec.encode(record)
        await remote_store.put_account_record(account, key, payload)
        return payload

    return _seed
