"""
Migration State Store.

Holds the observable state of the migration engine: whether a migration is
running, whether one can start, whether guest data exists, the transient
progress/result of the current attempt, and the durable attempt history.

Listeners subscribe through on_state_change(), on_progress() and
on_result(); each returns an unsubscribe function. Notifications are
delivered synchronously right after the state changes. There is no replay:
a listener that subscribes late should call check_migration_status() or
read ``state`` to catch up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from guestmigrate.migration.inventory import LocalDataInventory
from guestmigrate.migration.models import (
    MigrationAttempt,
    MigrationProgress,
    MigrationResult,
    MigrationState,
)
from guestmigrate.migration.observers import Observers, Unsubscribe
from guestmigrate.migration.repositories.history import MigrationHistoryRepository
from guestmigrate.namespace import KeyNamespaceResolver
from guestmigrate.observability import Tracer, create_tracer

logger = logging.getLogger(__name__)


class MigrationStateStore:
    """
    Observable migration state backed by a durable history repository.

    Example:
        >>> store = MigrationStateStore(history, inventory, resolver)
        >>> unsubscribe = store.on_progress(lambda p: print(p.percentage))
        >>> state = await store.check_migration_status()
    """

    def __init__(
        self,
        history: MigrationHistoryRepository,
        inventory: LocalDataInventory,
        resolver: KeyNamespaceResolver,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._history = history
        self._inventory = inventory
        self._resolver = resolver
        self._state = MigrationState()
        self._progress: MigrationProgress | None = None
        self._result: MigrationResult | None = None
        self._state_observers: Observers[MigrationState] = Observers("state")
        self._progress_observers: Observers[MigrationProgress] = Observers("progress")
        self._result_observers: Observers[MigrationResult] = Observers("result")

    @property
    def history(self) -> MigrationHistoryRepository:
        return self._history

    @property
    def state(self) -> MigrationState:
        """A snapshot of the current state."""
        return self._state.snapshot()

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def current_progress(self) -> MigrationProgress | None:
        return self._progress

    @property
    def current_result(self) -> MigrationResult | None:
        return self._result

    # -- subscriptions -------------------------------------------------------

    def on_state_change(self, listener: Callable[[MigrationState], None]) -> Unsubscribe:
        return self._state_observers.subscribe(listener)

    def on_progress(self, listener: Callable[[MigrationProgress], None]) -> Unsubscribe:
        return self._progress_observers.subscribe(listener)

    def on_result(self, listener: Callable[[MigrationResult], None]) -> Unsubscribe:
        return self._result_observers.subscribe(listener)

    # -- queries -------------------------------------------------------------

    async def check_migration_status(self) -> MigrationState:
        """
        Reconcile in-memory state with durable history.

        Reloads the process-wide attempt history (every account, newest
        first), recomputes has_local_data and can_start,
        notifies state listeners and returns a snapshot.
        """
        with self._tracer.span("guestmigrate.state_store.check_migration_status"):
            history = await self._history.list_attempts()
            has_local_data = await self._inventory.has_local_data()

            self._state.migration_history = history
            self._state.last_migration_attempt = history[0] if history else None
            self._state.has_local_data = has_local_data
            self._refresh_can_start()
            self._notify_state()
            return self._state.snapshot()

    async def has_successful_attempt(self, account_id: str) -> bool:
        attempts = await self._history.list_attempts(account_id)
        return any(a.success for a in attempts)

    def clear_migration_state(self) -> None:
        """
        Reset the transient progress and result.

        History is an audit trail and is never cleared.
        """
        self._progress = None
        self._result = None
        logger.debug("Cleared transient migration state")
        self._notify_state()

    # -- updates from the orchestrator --------------------------------------

    def try_begin(self) -> bool:
        """
        Mark a migration as active unless one already is.

        Synchronous so that the check and the set happen without yielding
        to the event loop.
        """
        if self._state.is_active:
            return False
        self._state.is_active = True
        self._progress = None
        self._result = None
        self._refresh_can_start()
        self._notify_state()
        return True

    def end(self) -> None:
        self._state.is_active = False
        self._refresh_can_start()
        self._notify_state()

    def publish_progress(self, progress: MigrationProgress) -> None:
        self._progress = progress
        self._progress_observers.notify(progress)

    def publish_result(self, result: MigrationResult) -> None:
        self._result = result
        self._result_observers.notify(result)

    async def record_attempt(self, attempt: MigrationAttempt) -> None:
        """Append ``attempt`` to durable history and to in-memory state."""
        await self._history.append(attempt)
        self._state.migration_history.insert(0, attempt)
        self._state.last_migration_attempt = attempt
        self._notify_state()

    def set_has_local_data(self, has_local_data: bool) -> None:
        self._state.has_local_data = has_local_data
        self._notify_state()

    def _refresh_can_start(self) -> None:
        self._state.can_start = self._resolver.account_id is not None and not self._state.is_active

    def _notify_state(self) -> None:
        self._state_observers.notify(self._state.snapshot())


__all__ = ["MigrationStateStore"]
