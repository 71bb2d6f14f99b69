"""
Guest-to-account migration engine.

Components:
    - LocalDataInventory: detects guest data
    - GuestToAccountRekeyer: moves guest data into an account namespace
    - RemoteMigrationOrchestrator: reconciles with remote records and commits
    - MigrationStateStore: observable state, progress, results and history
    - GuestClaimFlow: the post-authentication call sequence
    - MigrationEngine: wires the above together

Usage:
    >>> from guestmigrate.migration import MigrationEngine
    >>>
    >>> engine = MigrationEngine.create(local_store, remote_store)
    >>> engine.state_store.on_progress(lambda p: print(p.percentage))
    >>> outcome = await engine.flow.run(account_id, is_new_account=True)
"""

from guestmigrate.migration.conflicts import ConflictResolver
from guestmigrate.migration.engine import MigrationEngine
from guestmigrate.migration.flow import ClaimOutcome, GuestClaimFlow
from guestmigrate.migration.inventory import LocalDataInventory
from guestmigrate.migration.models import (
    ALREADY_IN_PROGRESS,
    CANCELLED_WARNING,
    NOTHING_TO_MIGRATE,
    ConflictAction,
    ConflictResolution,
    ConflictStrategy,
    MigrationAttempt,
    MigrationAttemptDraft,
    MigrationConfig,
    MigrationProgress,
    MigrationRecord,
    MigrationResult,
    MigrationState,
    MigrationStatus,
    MigrationStep,
    RekeyResult,
    SyncConflict,
)
from guestmigrate.migration.observers import Observers
from guestmigrate.migration.orchestrator import STEP_PERCENTAGES, RemoteMigrationOrchestrator
from guestmigrate.migration.rekeyer import GuestToAccountRekeyer
from guestmigrate.migration.repositories import (
    InMemoryMigrationHistoryRepository,
    MigrationHistoryRepository,
    SQLiteMigrationHistoryRepository,
)
from guestmigrate.migration.state_store import MigrationStateStore

__all__ = [
    # Components
    "LocalDataInventory",
    "GuestToAccountRekeyer",
    "ConflictResolver",
    "RemoteMigrationOrchestrator",
    "MigrationStateStore",
    "GuestClaimFlow",
    "ClaimOutcome",
    "MigrationEngine",
    "Observers",
    "STEP_PERCENTAGES",
    # Repositories
    "MigrationHistoryRepository",
    "InMemoryMigrationHistoryRepository",
    "SQLiteMigrationHistoryRepository",
    # Models
    "MigrationStatus",
    "MigrationStep",
    "ConflictStrategy",
    "ConflictAction",
    "ConflictResolution",
    "SyncConflict",
    "MigrationConfig",
    "MigrationRecord",
    "MigrationAttempt",
    "MigrationAttemptDraft",
    "MigrationProgress",
    "MigrationState",
    "RekeyResult",
    "MigrationResult",
    "ALREADY_IN_PROGRESS",
    "CANCELLED_WARNING",
    "NOTHING_TO_MIGRATE",
]
