"""
Remote Migration Orchestrator.

Runs one migration attempt for an account:

    REKEY_LOCAL -> FETCH_REMOTE -> DETECT_CONFLICTS -> RESOLVE_CONFLICTS
                -> COMMIT_REMOTE -> FINALIZE

Guarantees:
    - At most one attempt runs per orchestrator. A second call while one is
      active returns a rejected result immediately and writes nothing.
    - Progress is published at every step transition and after each
      committed key; the percentage never decreases within an attempt.
    - Remote failures are per key. Keys committed before a failure stay
      committed (no rollback); failed keys stay in the account's
      pending-commit marker and are retried by the next explicit call.
    - Expected failures never raise: they are returned in MigrationResult.

Usage:
    >>> orchestrator = RemoteMigrationOrchestrator(
    ...     store=local_store,
    ...     remote=account_store,
    ...     resolver=resolver,
    ...     inventory=inventory,
    ...     rekeyer=rekeyer,
    ...     state_store=state_store,
    ... )
    >>> if await orchestrator.check_profile_migration_needed(account_id):
    ...     result = await orchestrator.start_profile_migration(account_id)
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from uuid import UUID

from guestmigrate.exceptions import (
    MigrationCancellationNotAllowedError,
    MigrationError,
    MissingAccountIdError,
    StorageError,
    retry_async,
)
from guestmigrate.migration.conflicts import ConflictResolver
from guestmigrate.migration.inventory import LocalDataInventory
from guestmigrate.migration.models import (
    ALREADY_IN_PROGRESS,
    CANCELLED_WARNING,
    NOTHING_TO_MIGRATE,
    ConflictAction,
    ConflictResolution,
    MigrationAttemptDraft,
    MigrationConfig,
    MigrationProgress,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    MigrationStep,
    SyncConflict,
)
from guestmigrate.migration.rekeyer import GuestToAccountRekeyer
from guestmigrate.migration.state_store import MigrationStateStore
from guestmigrate.namespace import KeyNamespaceResolver
from guestmigrate.observability import (
    ATTR_ACCOUNT_ID,
    ATTR_ATTEMPT_ID,
    ATTR_MIGRATION_STEP,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from guestmigrate.records import BaseUserRecord, RecordCodec
from guestmigrate.serialization import json_dumps, json_loads
from guestmigrate.storage.interface import AccountRecordStore, KeyValueStore

logger = logging.getLogger(__name__)

# Progress reached when each step completes.
STEP_PERCENTAGES: dict[MigrationStep, float] = {
    MigrationStep.REKEY_LOCAL: 20.0,
    MigrationStep.FETCH_REMOTE: 40.0,
    MigrationStep.DETECT_CONFLICTS: 55.0,
    MigrationStep.RESOLVE_CONFLICTS: 70.0,
    MigrationStep.COMMIT_REMOTE: 95.0,
    MigrationStep.FINALIZE: 100.0,
}

STEP_MESSAGES: dict[MigrationStep, str] = {
    MigrationStep.REKEY_LOCAL: "Moving guest data into your account",
    MigrationStep.FETCH_REMOTE: "Loading your account data",
    MigrationStep.DETECT_CONFLICTS: "Comparing local and account data",
    MigrationStep.RESOLVE_CONFLICTS: "Resolving differences",
    MigrationStep.COMMIT_REMOTE: "Saving to your account",
    MigrationStep.FINALIZE: "Finishing up",
}


_KEEP_REMOTE = ConflictResolution(ConflictAction.KEEP_REMOTE)


class _MigrationCancelled(Exception):
    """Raised at a cancellation checkpoint to unwind the running attempt."""


@dataclass
class _PlannedWrite:
    key: str
    resolution: ConflictResolution
    local_value: BaseUserRecord | None
    remote_value: BaseUserRecord | None
    remote_payload: bytes | None = None


@dataclass
class _AttemptRun:
    draft: MigrationAttemptDraft
    percentage: float = 0.0
    step: MigrationStep | None = None
    conflicts: list[SyncConflict] = field(default_factory=list)
    backup_key: str | None = None


class RemoteMigrationOrchestrator:
    """
    Reconciles rekeyed local data with an account's remote records.

    The orchestrator is the only component that talks to the remote store.
    It is an explicitly constructed service; create one per process (or per
    test) and pass it to whatever needs it.

    Attributes:
        _store: Local key-value store.
        _remote: Remote account record store.
        _resolver: Key namespace resolver.
        _inventory: Guest data inventory.
        _rekeyer: Guest-to-account rekeyer (also owns the pending marker).
        _state: Observable state store.
        _config: Migration configuration.
        _conflicts: Conflict policy.
        _run: The attempt currently running, if any.
    """

    def __init__(
        self,
        store: KeyValueStore,
        remote: AccountRecordStore,
        resolver: KeyNamespaceResolver,
        inventory: LocalDataInventory,
        rekeyer: GuestToAccountRekeyer,
        state_store: MigrationStateStore,
        config: MigrationConfig | None = None,
        *,
        codec: RecordCodec | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Local key-value store holding guest and account namespaces
            remote: Remote per-account record store
            resolver: Resolver for physical keys
            inventory: Inventory used to detect guest data
            rekeyer: Rekeyer run as the first step of every attempt
            state_store: State store receiving progress, results and history
            config: Migration configuration (uses defaults if None)
            codec: Record codec (defaults to the inventory's codec)
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._remote = remote
        self._resolver = resolver
        self._inventory = inventory
        self._rekeyer = rekeyer
        self._state = state_store
        self._config = config or MigrationConfig()
        self._codec = codec or inventory.codec
        self._conflicts = ConflictResolver(self._config)
        self._run: _AttemptRun | None = None
        self._cancel_requested = False

    @property
    def config(self) -> MigrationConfig:
        return self._config

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def current_progress(self) -> MigrationProgress | None:
        return self._state.current_progress

    @property
    def current_result(self) -> MigrationResult | None:
        return self._state.current_result

    async def check_profile_migration_needed(self, account_id: str) -> bool:
        """
        True iff guest data exists and ``account_id`` has no successful attempt.

        Pure query; nothing is written. Keys rekeyed by an earlier attempt
        but not yet committed remotely are not guest data any more, so this
        returns False for them; use ``GuestToAccountRekeyer.pending_keys``
        to find that leftover work.

        Raises:
            MissingAccountIdError: If account_id is empty.
        """
        self._require_account(account_id, "check_profile_migration_needed")
        with self._tracer.span(
            "guestmigrate.orchestrator.check_profile_migration_needed",
            {ATTR_ACCOUNT_ID: account_id},
        ):
            if not await self._inventory.has_local_data():
                return False
            return not await self._state.has_successful_attempt(account_id)

    def cancel_migration(self) -> bool:
        """
        Request cancellation of the running attempt.

        Cancellation takes effect at the next step or key boundary; a write
        already in flight completes. Keys committed before that stay
        committed.

        Returns:
            True if a running attempt will be cancelled, False if nothing runs.

        Raises:
            MigrationCancellationNotAllowedError: If disabled by configuration.
        """
        if not self._config.allow_user_cancel:
            raise MigrationCancellationNotAllowedError()
        if self._run is None:
            return False
        self._cancel_requested = True
        logger.info("Cancellation requested for attempt %s", self._run.draft.attempt_id)
        return True

    async def start_profile_migration(self, account_id: str) -> MigrationResult:
        """
        Run one migration attempt for ``account_id``.

        Returns:
            MigrationResult. If another attempt is running, the result has
            ``rejected=True`` and nothing is written or recorded.

        Raises:
            MissingAccountIdError: If account_id is empty.
        """
        self._require_account(account_id, "start_profile_migration")

        # Checked and set before the first await.
        if not self._state.try_begin():
            logger.warning("Rejected migration for account %s: %s", account_id, ALREADY_IN_PROGRESS)
            return MigrationResult(
                success=False,
                account_id=account_id,
                errors=[ALREADY_IN_PROGRESS],
                message=ALREADY_IN_PROGRESS,
                rejected=True,
            )

        run = _AttemptRun(draft=MigrationAttemptDraft(account_id))
        self._run = run
        self._cancel_requested = False
        try:
            with self._tracer.span(
                "guestmigrate.orchestrator.start_profile_migration",
                {ATTR_ACCOUNT_ID: account_id, ATTR_ATTEMPT_ID: str(run.draft.attempt_id)},
            ):
                logger.info(
                    "Starting migration attempt %s for account %s",
                    run.draft.attempt_id,
                    account_id,
                )
                self._publish(run, None, 0.0, "Starting migration", MigrationStatus.PENDING)
                message = ""
                try:
                    message = await self._execute(run)
                except _MigrationCancelled:
                    run.draft.mark_cancelled()
                    run.draft.add_warning(CANCELLED_WARNING)
                    logger.info("Migration attempt %s cancelled", run.draft.attempt_id)
                except Exception as e:
                    logger.exception(
                        "Migration attempt %s failed unexpectedly", run.draft.attempt_id
                    )
                    run.draft.add_error(f"Unexpected error: {e}")
                return await self._finish(run, message)
        finally:
            self._run = None
            self._cancel_requested = False
            self._state.end()

    async def restore_backup(self, attempt_id: UUID) -> list[str]:
        """
        Put guest keys from the backup taken by ``attempt_id`` back in place.

        Only keys missing from the guest namespace are restored, so data
        entered after the backup is never overwritten.

        Returns:
            Logical keys that were restored.
        """
        backup_key = self._resolver.backup_key(attempt_id)
        with self._tracer.span(
            "guestmigrate.orchestrator.restore_backup",
            {ATTR_ATTEMPT_ID: str(attempt_id)},
        ):
            raw = await self._store.get(backup_key)
            if raw is None:
                return []
            try:
                snapshot = json_loads(raw)
                payloads = {key: base64.b64decode(value) for key, value in snapshot.items()}
            except (ValueError, AttributeError, binascii.Error) as e:
                raise StorageError(f"Backup {backup_key} is corrupt") from e

            restored: list[str] = []
            for key, payload in payloads.items():
                guest_key = self._resolver.resolve(key)
                if await self._store.get(guest_key) is None:
                    await self._store.set(guest_key, payload)
                    restored.append(key)
            logger.info("Restored %d guest key(s) from %s", len(restored), backup_key)
            return restored

    # -- attempt steps -------------------------------------------------------

    async def _execute(self, run: _AttemptRun) -> str:
        draft = run.draft
        account_id = draft.account_id

        self._step(run, MigrationStep.REKEY_LOCAL)
        if self._config.backup_enabled:
            await self._backup_guest_data(run)
        rekey = await self._rekeyer.migrate_guest_data_to_user(account_id)
        for error in rekey.errors:
            draft.add_error(error)
        for warning in rekey.warnings:
            draft.add_warning(warning)
        self._complete_step(run, MigrationStep.REKEY_LOCAL)

        self._checkpoint()
        self._step(run, MigrationStep.FETCH_REMOTE)
        candidates = await self._rekeyer.pending_keys(account_id)
        if not candidates:
            self._step(run, MigrationStep.FINALIZE)
            logger.info("Nothing to migrate for account %s", account_id)
            return NOTHING_TO_MIGRATE
        records, undecodable = await self._fetch(run, candidates)
        self._complete_step(run, MigrationStep.FETCH_REMOTE)

        self._checkpoint()
        self._step(run, MigrationStep.DETECT_CONFLICTS)
        plan, to_resolve, reconciled = self._detect(records)
        decided: list[SyncConflict] = []
        for key, guest_value, remote_payload in undecodable:
            conflict = self._conflicts.resolve_undecodable_remote(key, guest_value)
            decided.append(conflict)
            plan.append(
                _PlannedWrite(
                    key=key,
                    resolution=conflict.resolution or _KEEP_REMOTE,
                    local_value=guest_value,
                    remote_value=None,
                    remote_payload=remote_payload,
                )
            )
        if reconciled:
            await self._rekeyer.clear_pending(account_id, reconciled)
            worthy = {record.key for record in records if record.needs_migration}
            for key in reconciled:
                if key in worthy:
                    draft.mark_migrated(key)
        self._complete_step(run, MigrationStep.DETECT_CONFLICTS)

        self._checkpoint()
        self._step(run, MigrationStep.RESOLVE_CONFLICTS)
        plan.extend(self._resolve(run, to_resolve, decided))
        self._complete_step(run, MigrationStep.RESOLVE_CONFLICTS)

        self._checkpoint()
        self._step(run, MigrationStep.COMMIT_REMOTE)
        await self._commit(run, plan)
        self._complete_step(run, MigrationStep.COMMIT_REMOTE)

        self._step(run, MigrationStep.FINALIZE)
        return ""

    async def _fetch(
        self,
        run: _AttemptRun,
        candidates: list[str],
    ) -> tuple[list[MigrationRecord], list[tuple[str, BaseUserRecord, bytes]]]:
        draft = run.draft
        account_id = draft.account_id
        records: list[MigrationRecord] = []
        undecodable: list[tuple[str, BaseUserRecord, bytes]] = []

        with self._tracer.span(
            "guestmigrate.orchestrator.fetch_remote",
            {ATTR_ACCOUNT_ID: account_id, ATTR_RECORD_COUNT: len(candidates)},
        ):
            for key in candidates:
                self._checkpoint()
                try:
                    payload = await self._store.get(self._resolver.resolve(key, account_id))
                    if payload is None:
                        # Account copy removed since it was rekeyed; nothing left to commit.
                        logger.warning("Pending key %s has no account copy, dropping it", key)
                        await self._rekeyer.clear_pending(account_id, [key])
                        continue
                    local = self._codec.decode(key, payload)
                except MigrationError as e:
                    draft.add_error(f"{key}: {e.message}")
                    logger.warning("Could not load local %s for account %s: %s", key, account_id, e)
                    continue

                try:
                    remote_payload = await retry_async(
                        lambda: self._remote.get_account_record(account_id, key),
                        f"get_account_record:{key}",
                        self._config.remote_retry,
                    )
                except (MigrationError, TimeoutError) as e:
                    draft.add_error(f"{key}: failed to read remote record: {e}")
                    logger.warning("Remote read failed for %s (account %s): %s", key, account_id, e)
                    continue

                remote: BaseUserRecord | None = None
                if remote_payload is not None:
                    try:
                        remote = self._codec.decode(key, remote_payload)
                    except MigrationError:
                        undecodable.append((key, local, remote_payload))
                        continue

                records.append(
                    MigrationRecord(
                        key=key,
                        guest_value=local,
                        remote_value=remote,
                        last_local_modified=local.updated_at,
                        last_remote_modified=remote.updated_at if remote else None,
                    )
                )
        return records, undecodable

    def _detect(
        self,
        records: list[MigrationRecord],
    ) -> tuple[list[_PlannedWrite], list[tuple[str, BaseUserRecord, BaseUserRecord]], list[str]]:
        plan: list[_PlannedWrite] = []
        conflicts: list[tuple[str, BaseUserRecord, BaseUserRecord]] = []
        reconciled: list[str] = []

        for record in records:
            if record.in_sync or (not record.needs_migration and record.remote_value is None):
                reconciled.append(record.key)
            elif record.remote_value is None:
                plan.append(
                    _PlannedWrite(
                        key=record.key,
                        resolution=ConflictResolution(ConflictAction.KEEP_LOCAL),
                        local_value=record.guest_value,
                        remote_value=None,
                    )
                )
            elif self._conflicts.detect(record) and record.guest_value is not None:
                conflicts.append((record.key, record.guest_value, record.remote_value))
        logger.debug(
            "Detected %d conflict(s), %d new key(s), %d key(s) already in sync",
            len(conflicts),
            len(plan),
            len(reconciled),
        )
        return plan, conflicts, reconciled

    def _resolve(
        self,
        run: _AttemptRun,
        to_resolve: list[tuple[str, BaseUserRecord, BaseUserRecord]],
        decided: list[SyncConflict],
    ) -> list[_PlannedWrite]:
        plan: list[_PlannedWrite] = []
        resolved = list(decided)
        for key, local, remote in to_resolve:
            conflict = self._conflicts.resolve(key, local, remote)
            resolved.append(conflict)
            plan.append(
                _PlannedWrite(
                    key=key,
                    resolution=conflict.resolution or _KEEP_REMOTE,
                    local_value=local,
                    remote_value=remote,
                )
            )

        for conflict in resolved:
            if conflict.warning:
                run.draft.add_warning(conflict.warning)
            run.conflicts.append(conflict)
            logger.debug(
                "Resolved %s as %s",
                conflict.key,
                conflict.resolution.action.value if conflict.resolution else None,
            )
        run.draft.conflict_count = len(run.conflicts)
        return plan

    async def _commit(self, run: _AttemptRun, plan: list[_PlannedWrite]) -> None:
        draft = run.draft
        account_id = draft.account_id
        start = STEP_PERCENTAGES[MigrationStep.RESOLVE_CONFLICTS]
        end = STEP_PERCENTAGES[MigrationStep.COMMIT_REMOTE]

        with self._tracer.span(
            "guestmigrate.orchestrator.commit_remote",
            {ATTR_ACCOUNT_ID: account_id, ATTR_RECORD_COUNT: len(plan)},
        ):
            for index, write in enumerate(plan, start=1):
                self._checkpoint()
                try:
                    await self._commit_key(account_id, write)
                    await self._rekeyer.clear_pending(account_id, [write.key])
                except (MigrationError, TimeoutError) as e:
                    draft.add_error(f"{write.key}: {e}")
                    logger.warning(
                        "Failed to commit %s for account %s: %s", write.key, account_id, e
                    )
                else:
                    draft.mark_migrated(write.key)
                self._publish(
                    run,
                    MigrationStep.COMMIT_REMOTE,
                    start + (end - start) * index / len(plan),
                    f"Saved {index} of {len(plan)}",
                )

    async def _commit_key(self, account_id: str, write: _PlannedWrite) -> None:
        action = write.resolution.action
        winner = write.resolution.winner(write.local_value, write.remote_value)

        if action in (ConflictAction.KEEP_LOCAL, ConflictAction.MERGE):
            if winner is None:
                raise StorageError("No local value to commit", account_id=account_id, key=write.key)
            payload = self._codec.encode(winner)
            await retry_async(
                lambda: self._remote.put_account_record(account_id, write.key, payload),
                f"put_account_record:{write.key}",
                self._config.remote_retry,
            )

        if action in (ConflictAction.KEEP_REMOTE, ConflictAction.MERGE):
            if winner is not None:
                refreshed = self._codec.encode(winner)
            elif write.remote_payload is not None:
                refreshed = write.remote_payload
            else:
                return
            await self._store.set(self._resolver.resolve(write.key, account_id), refreshed)

    async def _backup_guest_data(self, run: _AttemptRun) -> None:
        draft = run.draft
        try:
            keys = await self._inventory.guest_keys()
            if not keys:
                return
            snapshot: dict[str, str] = {}
            for key in keys:
                payload = await self._store.get(self._resolver.resolve(key))
                if payload is not None:
                    snapshot[key] = base64.b64encode(payload).decode("ascii")
            backup_key = self._resolver.backup_key(draft.attempt_id)
            await self._store.set(backup_key, json_dumps(snapshot).encode("utf-8"))
            run.backup_key = backup_key
            logger.debug("Backed up %d guest key(s) to %s", len(snapshot), backup_key)
        except MigrationError as e:
            draft.add_warning(f"Could not back up guest data: {e.message}")
            logger.warning("Guest backup failed for attempt %s: %s", draft.attempt_id, e)

    async def _finish(self, run: _AttemptRun, message: str) -> MigrationResult:
        draft = run.draft
        if (
            run.backup_key is not None
            and self._config.cleanup_backup_after_success
            and not draft.has_errors
            and not draft.cancelled
        ):
            try:
                await self._store.delete(run.backup_key)
            except MigrationError as e:
                draft.add_warning(f"Could not remove guest backup: {e.message}")
                logger.warning("Failed to remove %s: %s", run.backup_key, e)

        attempt = draft.seal()
        errors = list(attempt.errors)
        try:
            await self._state.record_attempt(attempt)
        except MigrationError as e:
            errors.append(f"Failed to record attempt in history: {e.message}")
            logger.error("Failed to record attempt %s: %s", attempt.attempt_id, e)

        try:
            self._state.set_has_local_data(await self._inventory.has_local_data())
        except MigrationError as e:
            logger.warning("Could not refresh local data flag: %s", e)

        success = attempt.success and not errors
        if attempt.cancelled:
            message = CANCELLED_WARNING
        elif success:
            message = message or "Migration completed"
        else:
            message = f"Migration finished with {len(errors)} error(s)"

        progress = self._publish(
            run,
            run.step,
            100.0 if success else run.percentage,
            message,
            MigrationStatus.SUCCEEDED if success else MigrationStatus.FAILED,
        )
        result = MigrationResult(
            success=success,
            account_id=attempt.account_id,
            attempt_id=attempt.attempt_id,
            migrated_keys=list(draft.migrated_keys),
            errors=errors,
            warnings=list(attempt.warnings),
            conflicts=list(run.conflicts),
            progress=progress,
            duration_ms=attempt.duration_ms,
            message=message,
            cancelled=attempt.cancelled,
        )
        if success:
            logger.info(
                "Migration attempt %s for account %s succeeded: %d key(s) migrated",
                attempt.attempt_id,
                attempt.account_id,
                len(result.migrated_keys),
            )
        else:
            logger.error(
                "Migration attempt %s for account %s failed: %s",
                attempt.attempt_id,
                attempt.account_id,
                "; ".join(errors) or message,
            )
        self._state.publish_result(result)
        return result

    # -- helpers -------------------------------------------------------------

    def _checkpoint(self) -> None:
        if self._cancel_requested:
            raise _MigrationCancelled()

    def _step(self, run: _AttemptRun, step: MigrationStep) -> None:
        with self._tracer.span(
            "guestmigrate.orchestrator.step",
            {ATTR_ATTEMPT_ID: str(run.draft.attempt_id), ATTR_MIGRATION_STEP: step.value},
        ):
            self._publish(run, step, run.percentage, STEP_MESSAGES[step])

    def _complete_step(self, run: _AttemptRun, step: MigrationStep) -> None:
        self._publish(run, step, STEP_PERCENTAGES[step], STEP_MESSAGES[step])

    def _publish(
        self,
        run: _AttemptRun,
        step: MigrationStep | None,
        percentage: float,
        message: str,
        status: MigrationStatus = MigrationStatus.RUNNING,
    ) -> MigrationProgress:
        run.percentage = max(run.percentage, min(percentage, 100.0))
        run.step = step
        progress = MigrationProgress(
            attempt_id=run.draft.attempt_id,
            status=status,
            current_step=step,
            percentage=run.percentage,
            message=message,
        )
        self._state.publish_progress(progress)
        return progress

    @staticmethod
    def _require_account(account_id: str, operation: str) -> None:
        if not isinstance(account_id, str) or not account_id.strip():
            raise MissingAccountIdError(operation)


__all__ = [
    "RemoteMigrationOrchestrator",
    "STEP_PERCENTAGES",
]
