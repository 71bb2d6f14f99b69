"""
Data models for guest-to-account migration.

Enums:
    - MigrationStatus: Lifecycle status of an attempt
    - MigrationStep: Orchestrator steps, in execution order
    - ConflictStrategy: How a guest/remote conflict is decided
    - ConflictAction: The decision taken for one key

Configuration:
    - MigrationConfig: Orchestrator configuration

Core Models:
    - MigrationRecord: One logical key's guest and remote values
    - SyncConflict / ConflictResolution: A detected conflict and its decision
    - MigrationAttempt: Immutable audit record of one attempt
    - MigrationAttemptDraft: Write-once builder for MigrationAttempt
    - MigrationProgress: Progress snapshot pushed to listeners
    - MigrationState: Observable state of the engine
    - RekeyResult: Outcome of the local rekey step
    - MigrationResult: Final outcome returned to callers
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from guestmigrate.exceptions import MigrationStateError, RetryConfig
from guestmigrate.records import BaseUserRecord


class MigrationStatus(Enum):
    """
    Lifecycle status of a migration attempt.

    State machine transitions:
        PENDING -> RUNNING -> SUCCEEDED
                      |
                      +----> FAILED (errors or cancellation)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for SUCCEEDED and FAILED."""
        return self in (MigrationStatus.SUCCEEDED, MigrationStatus.FAILED)


class MigrationStep(Enum):
    """Orchestrator steps, in the order they run."""

    REKEY_LOCAL = "rekey_local"
    FETCH_REMOTE = "fetch_remote"
    DETECT_CONFLICTS = "detect_conflicts"
    RESOLVE_CONFLICTS = "resolve_conflicts"
    COMMIT_REMOTE = "commit_remote"
    FINALIZE = "finalize"


class ConflictStrategy(Enum):
    """
    Strategy for deciding a conflict between a guest and a remote record.

    Attributes:
        REMOTE_WINS: Remote fields win; local fills fields that are empty
            remotely. An entirely empty remote record keeps local.
        LOCAL_WINS: Local record replaces remote unless local is empty.
        NEWEST_WINS: The record with the later updated_at wins; ties keep
            remote. Falls back to REMOTE_WINS when timestamps are missing.
    """

    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"
    NEWEST_WINS = "newest_wins"


class ConflictAction(Enum):
    KEEP_REMOTE = "keep_remote"
    KEEP_LOCAL = "keep_local"
    MERGE = "merge"


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for the migration orchestrator.

    Attributes:
        allow_user_cancel: Whether cancel_migration() is permitted (default True).
        backup_enabled: Snapshot guest data before rekeying (default True).
        cleanup_backup_after_success: Remove the snapshot once an attempt
            succeeds (default True).
        default_strategy: Conflict strategy for keys without an override.
        strategy_overrides: Per-key conflict strategies.
        remote_retry: Retry policy for remote calls (default: single attempt).

    Example:
        >>> config = MigrationConfig(
        ...     strategy_overrides={"workout_sessions": ConflictStrategy.NEWEST_WINS},
        ... )
        >>> config.strategy_for("workout_sessions")
        <ConflictStrategy.NEWEST_WINS: 'newest_wins'>
    """

    allow_user_cancel: bool = True
    backup_enabled: bool = True
    cleanup_backup_after_success: bool = True
    default_strategy: ConflictStrategy = ConflictStrategy.REMOTE_WINS
    strategy_overrides: dict[str, ConflictStrategy] = field(default_factory=dict)
    remote_retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.default_strategy, ConflictStrategy):
            raise ValueError(
                f"default_strategy must be a ConflictStrategy, got {self.default_strategy!r}"
            )
        for key, strategy in self.strategy_overrides.items():
            if not key:
                raise ValueError("strategy_overrides keys must not be empty")
            if not isinstance(strategy, ConflictStrategy):
                raise ValueError(
                    f"strategy for {key!r} must be a ConflictStrategy, got {strategy!r}"
                )

    def strategy_for(self, key: str) -> ConflictStrategy:
        return self.strategy_overrides.get(key, self.default_strategy)


@dataclass
class MigrationRecord:
    """
    One logical key's values on both sides of a migration.

    A record without a guest value (or with an empty one) is never migrated.
    """

    key: str
    guest_value: BaseUserRecord | None = None
    remote_value: BaseUserRecord | None = None
    last_local_modified: datetime | None = None
    last_remote_modified: datetime | None = None

    @property
    def needs_migration(self) -> bool:
        return self.guest_value is not None and not self.guest_value.is_empty()

    @property
    def in_sync(self) -> bool:
        """True when a remote copy exists with the same content as the guest copy."""
        return (
            self.guest_value is not None
            and self.remote_value is not None
            and self.guest_value.same_content(self.remote_value)
        )


@dataclass(frozen=True)
class ConflictResolution:
    """
    Decision taken for one conflicting key.

    Attributes:
        action: What to keep.
        merged_value: The merged record, set only for MERGE.
    """

    action: ConflictAction
    merged_value: BaseUserRecord | None = None

    def __post_init__(self) -> None:
        if self.action is ConflictAction.MERGE and self.merged_value is None:
            raise ValueError("MERGE resolution requires merged_value")

    def winner(
        self,
        local: BaseUserRecord | None,
        remote: BaseUserRecord | None,
    ) -> BaseUserRecord | None:
        """Return the record that should end up on both sides."""
        if self.action is ConflictAction.KEEP_LOCAL:
            return local
        if self.action is ConflictAction.KEEP_REMOTE:
            return remote
        return self.merged_value


@dataclass
class SyncConflict:
    """A key whose guest and remote values differ, and how it was resolved."""

    key: str
    guest_value: BaseUserRecord | None
    remote_value: BaseUserRecord | None
    resolution: ConflictResolution | None = None
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "action": self.resolution.action.value if self.resolution else None,
            "warning": self.warning,
        }


@dataclass(frozen=True)
class MigrationAttempt:
    """
    Immutable audit record of one migration attempt.

    Attempts are only created by MigrationAttemptDraft.seal() and are never
    modified afterwards.
    """

    attempt_id: UUID
    account_id: str
    started_at: datetime
    finished_at: datetime
    success: bool
    migrated_keys: frozenset[str] = frozenset()
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    cancelled: bool = False
    conflict_count: int = 0

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000.0

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON storage.

        Returns:
            Dictionary representation suitable for JSON serialization.
        """
        return {
            "attempt_id": str(self.attempt_id),
            "account_id": self.account_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "success": self.success,
            "migrated_keys": sorted(self.migrated_keys),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "cancelled": self.cancelled,
            "conflict_count": self.conflict_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationAttempt:
        return cls(
            attempt_id=UUID(str(data["attempt_id"])),
            account_id=data["account_id"],
            started_at=datetime.fromisoformat(data["started_at"]),
            finished_at=datetime.fromisoformat(data["finished_at"]),
            success=bool(data["success"]),
            migrated_keys=frozenset(data.get("migrated_keys", ())),
            errors=tuple(data.get("errors", ())),
            warnings=tuple(data.get("warnings", ())),
            cancelled=bool(data.get("cancelled", False)),
            conflict_count=int(data.get("conflict_count", 0)),
        )


class MigrationAttemptDraft:
    """
    Accumulates the outcome of an attempt while it runs.

    seal() produces the immutable MigrationAttempt exactly once; the attempt
    succeeds only if no error was recorded and it was not cancelled.

    Example:
        >>> draft = MigrationAttemptDraft("acct-1")
        >>> draft.mark_migrated("profile")
        >>> attempt = draft.seal()
        >>> attempt.success
        True
    """

    def __init__(self, account_id: str, attempt_id: UUID | None = None) -> None:
        self.attempt_id = attempt_id or uuid4()
        self.account_id = account_id
        self.started_at = datetime.now(UTC)
        self.migrated_keys: list[str] = []
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.conflict_count = 0
        self.cancelled = False
        self._sealed: MigrationAttempt | None = None

    @property
    def is_sealed(self) -> bool:
        return self._sealed is not None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def mark_migrated(self, key: str) -> None:
        self._check_open()
        if key not in self.migrated_keys:
            self.migrated_keys.append(key)

    def add_error(self, message: str) -> None:
        self._check_open()
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self._check_open()
        self.warnings.append(message)

    def mark_cancelled(self) -> None:
        self._check_open()
        self.cancelled = True

    def seal(self) -> MigrationAttempt:
        """
        Freeze the draft into a MigrationAttempt.

        Raises:
            MigrationStateError: If the draft was already sealed.
        """
        self._check_open()
        self._sealed = MigrationAttempt(
            attempt_id=self.attempt_id,
            account_id=self.account_id,
            started_at=self.started_at,
            finished_at=datetime.now(UTC),
            success=not self.errors and not self.cancelled,
            migrated_keys=frozenset(self.migrated_keys),
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            cancelled=self.cancelled,
            conflict_count=self.conflict_count,
        )
        return self._sealed

    def _check_open(self) -> None:
        if self._sealed is not None:
            raise MigrationStateError(
                f"Attempt {self.attempt_id} is already sealed",
                account_id=self.account_id,
            )


@dataclass(frozen=True)
class MigrationProgress:
    """
    Progress snapshot of an attempt.

    Attributes:
        attempt_id: Attempt the snapshot belongs to.
        status: Lifecycle status.
        current_step: Step being executed, or None before the first step.
        percentage: 0-100; never decreases within an attempt.
        message: Human-readable description of the current step.
    """

    attempt_id: UUID
    status: MigrationStatus
    current_step: MigrationStep | None = None
    percentage: float = 0.0
    message: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.percentage <= 100.0:
            raise ValueError(f"percentage must be between 0 and 100, got {self.percentage}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": str(self.attempt_id),
            "status": self.status.value,
            "current_step": self.current_step.value if self.current_step else None,
            "percentage": self.percentage,
            "message": self.message,
        }


@dataclass
class MigrationState:
    """
    Observable state of the migration engine.

    Listeners always receive a snapshot(), never the live object.
    """

    is_active: bool = False
    can_start: bool = False
    has_local_data: bool = False
    last_migration_attempt: MigrationAttempt | None = None
    migration_history: list[MigrationAttempt] = field(default_factory=list)

    def snapshot(self) -> MigrationState:
        return MigrationState(
            is_active=self.is_active,
            can_start=self.can_start,
            has_local_data=self.has_local_data,
            last_migration_attempt=self.last_migration_attempt,
            migration_history=list(self.migration_history),
        )


@dataclass
class RekeyResult:
    """Outcome of moving guest keys into an account namespace."""

    success: bool = True
    migrated_keys: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MigrationResult:
    """
    Final outcome of start_profile_migration().

    ``rejected`` is True when the call was refused before doing any work
    (for example because another migration was running); such results have
    no attempt recorded in history.
    """

    success: bool
    account_id: str
    attempt_id: UUID | None = None
    migrated_keys: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    conflicts: list[SyncConflict] = field(default_factory=list)
    progress: MigrationProgress | None = None
    duration_ms: float = 0.0
    message: str = ""
    rejected: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation suitable for JSON.
        """
        return {
            "success": self.success,
            "account_id": self.account_id,
            "attempt_id": str(self.attempt_id) if self.attempt_id else None,
            "migrated_keys": list(self.migrated_keys),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "progress": self.progress.to_dict() if self.progress else None,
            "duration_ms": self.duration_ms,
            "message": self.message,
            "rejected": self.rejected,
            "cancelled": self.cancelled,
        }


CANCELLED_WARNING = "Migration cancelled by user"
ALREADY_IN_PROGRESS = "Migration is already in progress"
NOTHING_TO_MIGRATE = "Nothing to migrate"


__all__ = [
    "MigrationStatus",
    "MigrationStep",
    "ConflictStrategy",
    "ConflictAction",
    "MigrationConfig",
    "MigrationRecord",
    "ConflictResolution",
    "SyncConflict",
    "MigrationAttempt",
    "MigrationAttemptDraft",
    "MigrationProgress",
    "MigrationState",
    "RekeyResult",
    "MigrationResult",
    "CANCELLED_WARNING",
    "ALREADY_IN_PROGRESS",
    "NOTHING_TO_MIGRATE",
]
