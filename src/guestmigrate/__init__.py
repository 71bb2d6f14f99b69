"""
guestmigrate - Guest-to-account data migration for client applications.

This library provides:
- Key namespace resolution for guest and account-scoped local storage
- Typed record payloads (pydantic) with field and collection merging
- Write-then-delete rekeying of guest data into an account namespace
- Remote reconciliation with a configurable conflict policy
- Observable migration state with a durable, append-only attempt history
- In-memory, SQLite (aiosqlite) and SQLAlchemy storage backends
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("guestmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from guestmigrate.exceptions import (
    AccountAlreadyAssociatedError,
    InvalidKeyError,
    MigrationCancellationNotAllowedError,
    MigrationError,
    MigrationStateError,
    MissingAccountIdError,
    RecordDecodeError,
    RemoteStorageError,
    RetryConfig,
    StorageError,
)
from guestmigrate.migration import (
    ClaimOutcome,
    ConflictAction,
    ConflictResolution,
    ConflictStrategy,
    GuestClaimFlow,
    GuestToAccountRekeyer,
    InMemoryMigrationHistoryRepository,
    LocalDataInventory,
    MigrationAttempt,
    MigrationConfig,
    MigrationEngine,
    MigrationHistoryRepository,
    MigrationProgress,
    MigrationResult,
    MigrationState,
    MigrationStateStore,
    MigrationStatus,
    MigrationStep,
    RekeyResult,
    RemoteMigrationOrchestrator,
    SQLiteMigrationHistoryRepository,
    SyncConflict,
)
from guestmigrate.namespace import KeyNamespaceResolver, NamespaceConfig
from guestmigrate.records import (
    BaseUserRecord,
    BodyMeasurementsRecord,
    BodyMetricsRecord,
    DietPreferencesRecord,
    MealLogsRecord,
    ProfileRecord,
    RecordCodec,
    RecordRegistry,
    UserRecord,
    WorkoutPreferencesRecord,
    WorkoutSessionsRecord,
)
from guestmigrate.storage import (
    AccountRecordStore,
    InMemoryAccountRecordStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    SQLAlchemyAccountRecordStore,
    SQLiteKeyValueStore,
)

__all__ = [
    "__version__",
    # Exceptions
    "MigrationError",
    "InvalidKeyError",
    "MissingAccountIdError",
    "AccountAlreadyAssociatedError",
    "MigrationStateError",
    "MigrationCancellationNotAllowedError",
    "RecordDecodeError",
    "StorageError",
    "RemoteStorageError",
    "RetryConfig",
    # Namespace
    "NamespaceConfig",
    "KeyNamespaceResolver",
    # Records
    "BaseUserRecord",
    "UserRecord",
    "ProfileRecord",
    "BodyMetricsRecord",
    "DietPreferencesRecord",
    "WorkoutPreferencesRecord",
    "WorkoutSessionsRecord",
    "MealLogsRecord",
    "BodyMeasurementsRecord",
    "RecordRegistry",
    "RecordCodec",
    # Storage
    "KeyValueStore",
    "AccountRecordStore",
    "InMemoryKeyValueStore",
    "InMemoryAccountRecordStore",
    "SQLiteKeyValueStore",
    "SQLAlchemyAccountRecordStore",
    # Migration
    "LocalDataInventory",
    "GuestToAccountRekeyer",
    "RemoteMigrationOrchestrator",
    "MigrationStateStore",
    "GuestClaimFlow",
    "ClaimOutcome",
    "MigrationEngine",
    "MigrationHistoryRepository",
    "InMemoryMigrationHistoryRepository",
    "SQLiteMigrationHistoryRepository",
    "MigrationConfig",
    "ConflictStrategy",
    "ConflictAction",
    "ConflictResolution",
    "SyncConflict",
    "MigrationAttempt",
    "MigrationProgress",
    "MigrationResult",
    "MigrationState",
    "MigrationStatus",
    "MigrationStep",
    "RekeyResult",
]
