"""
Storage interfaces and backends.

Local (device) storage:
    - KeyValueStore: protocol
    - InMemoryKeyValueStore: for tests and development
    - SQLiteKeyValueStore: aiosqlite-backed on-device store

Remote (per-account) storage:
    - AccountRecordStore: protocol
    - InMemoryAccountRecordStore: for tests and development
    - SQLAlchemyAccountRecordStore: SQLAlchemy async engine (PostgreSQL, SQLite)
"""

from guestmigrate.storage.in_memory import InMemoryAccountRecordStore, InMemoryKeyValueStore
from guestmigrate.storage.interface import AccountRecordStore, KeyValueStore
from guestmigrate.storage.sqlalchemy import ACCOUNT_RECORDS_SCHEMA, SQLAlchemyAccountRecordStore
from guestmigrate.storage.sqlite import KV_STORE_SCHEMA, SQLiteKeyValueStore

__all__ = [
    "KeyValueStore",
    "AccountRecordStore",
    "InMemoryKeyValueStore",
    "InMemoryAccountRecordStore",
    "SQLiteKeyValueStore",
    "KV_STORE_SCHEMA",
    "SQLAlchemyAccountRecordStore",
    "ACCOUNT_RECORDS_SCHEMA",
]
