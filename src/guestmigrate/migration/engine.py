"""
Wiring for a complete migration engine instance.

MigrationEngine.create() builds the resolver, inventory, rekeyer, state
store, orchestrator and claim flow around the given storage backends so
that every collaborator shares the same resolver and codec.
"""

from __future__ import annotations

from dataclasses import dataclass

from guestmigrate.migration.flow import GuestClaimFlow
from guestmigrate.migration.inventory import LocalDataInventory
from guestmigrate.migration.models import MigrationConfig
from guestmigrate.migration.orchestrator import RemoteMigrationOrchestrator
from guestmigrate.migration.rekeyer import GuestToAccountRekeyer
from guestmigrate.migration.repositories.history import (
    InMemoryMigrationHistoryRepository,
    MigrationHistoryRepository,
)
from guestmigrate.migration.state_store import MigrationStateStore
from guestmigrate.namespace import KeyNamespaceResolver, NamespaceConfig
from guestmigrate.observability import Tracer, create_tracer
from guestmigrate.records import RecordCodec, RecordRegistry
from guestmigrate.storage.interface import AccountRecordStore, KeyValueStore


@dataclass(frozen=True)
class MigrationEngine:
    """
    One explicitly constructed migration engine.

    Example:
        >>> engine = MigrationEngine.create(local_store, remote_store)
        >>> outcome = await engine.flow.run(account_id)
    """

    resolver: KeyNamespaceResolver
    inventory: LocalDataInventory
    rekeyer: GuestToAccountRekeyer
    state_store: MigrationStateStore
    orchestrator: RemoteMigrationOrchestrator
    flow: GuestClaimFlow

    @classmethod
    def create(
        cls,
        store: KeyValueStore,
        remote: AccountRecordStore,
        history: MigrationHistoryRepository | None = None,
        config: MigrationConfig | None = None,
        *,
        namespace: NamespaceConfig | None = None,
        registry: RecordRegistry | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> MigrationEngine:
        """
        Build an engine around ``store`` and ``remote``.

        Args:
            store: Local key-value store
            remote: Remote account record store
            history: Attempt history (in-memory if None)
            config: Migration configuration (uses defaults if None)
            namespace: Key prefixes (uses defaults if None)
            registry: Logical keys and record types (built-in kinds if None)
            tracer: Tracer shared by every component
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        tracer = tracer or create_tracer(__name__, enable_tracing)
        resolver = KeyNamespaceResolver(namespace)
        codec = RecordCodec(registry)
        inventory = LocalDataInventory(store, resolver, codec, tracer=tracer)
        rekeyer = GuestToAccountRekeyer(store, resolver, codec, tracer=tracer)
        state_store = MigrationStateStore(
            history or InMemoryMigrationHistoryRepository(tracer=tracer),
            inventory,
            resolver,
            tracer=tracer,
        )
        orchestrator = RemoteMigrationOrchestrator(
            store,
            remote,
            resolver,
            inventory,
            rekeyer,
            state_store,
            config,
            codec=codec,
            tracer=tracer,
        )
        flow = GuestClaimFlow(resolver, inventory, rekeyer, orchestrator, tracer=tracer)
        return cls(
            resolver=resolver,
            inventory=inventory,
            rekeyer=rekeyer,
            state_store=state_store,
            orchestrator=orchestrator,
            flow=flow,
        )


__all__ = ["MigrationEngine"]
