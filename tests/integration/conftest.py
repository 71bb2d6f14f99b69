"""
Shared pytest fixtures for integration tests.

This module provides file-backed SQLite fixtures for the local key-value
store, the attempt history and the SQLAlchemy remote store (through the
aiosqlite dialect). No external services are needed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from guestmigrate.migration.repositories import SQLiteMigrationHistoryRepository
from guestmigrate.storage import SQLAlchemyAccountRecordStore, SQLiteKeyValueStore


@pytest_asyncio.fixture
async def local_db(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """On-device database file shared by the key-value store and history."""
    async with aiosqlite.connect(tmp_path / "local.db") as db:
        yield db


@pytest_asyncio.fixture
async def sqlite_kv_store(local_db: aiosqlite.Connection) -> SQLiteKeyValueStore:
    store = SQLiteKeyValueStore(local_db, enable_tracing=False)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def sqlite_history(local_db: aiosqlite.Connection) -> SQLiteMigrationHistoryRepository:
    history = SQLiteMigrationHistoryRepository(local_db, enable_tracing=False)
    await history.initialize()
    return history


@pytest_asyncio.fixture
async def remote_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLAlchemy async engine standing in for the account service database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sqlalchemy_remote(remote_engine: AsyncEngine) -> SQLAlchemyAccountRecordStore:
    remote = SQLAlchemyAccountRecordStore(remote_engine, enable_tracing=False)
    await remote.initialize()
    return remote
