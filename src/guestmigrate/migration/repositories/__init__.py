"""
Repository implementations for the migration engine.

Repositories:
    - MigrationHistoryRepository: protocol for the append-only attempt history
    - InMemoryMigrationHistoryRepository: in-memory implementation
    - SQLiteMigrationHistoryRepository: aiosqlite implementation

Usage:
    >>> from guestmigrate.migration.repositories import SQLiteMigrationHistoryRepository
    >>>
    >>> history = SQLiteMigrationHistoryRepository(db)
    >>> await history.initialize()
"""

from guestmigrate.migration.repositories.history import (
    MIGRATION_ATTEMPTS_SCHEMA,
    InMemoryMigrationHistoryRepository,
    MigrationHistoryRepository,
    SQLiteMigrationHistoryRepository,
)

__all__ = [
    "MigrationHistoryRepository",
    "InMemoryMigrationHistoryRepository",
    "SQLiteMigrationHistoryRepository",
    "MIGRATION_ATTEMPTS_SCHEMA",
]
