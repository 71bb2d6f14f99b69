"""
Local Data Inventory.

Answers "does this device hold guest data worth migrating?" by scanning the
guest namespace for every registered key. The scan always targets the guest
namespace explicitly, so the answer is the same before and after an account
is associated with the session. has_guest_data_for_migration() additionally
enforces that callers ask before sign-in completes.
"""

from __future__ import annotations

import logging

from guestmigrate.exceptions import AccountAlreadyAssociatedError, MigrationError
from guestmigrate.namespace import KeyNamespaceResolver
from guestmigrate.observability import ATTR_RECORD_COUNT, Tracer, create_tracer
from guestmigrate.records import BaseUserRecord, RecordCodec
from guestmigrate.storage.interface import KeyValueStore

logger = logging.getLogger(__name__)


class LocalDataInventory:
    """
    Detects guest data in local storage.

    Read and decode failures are treated as "no data" for the affected key
    and logged at WARNING; neither method raises for storage problems.

    Example:
        >>> inventory = LocalDataInventory(store, resolver)
        >>> if await inventory.has_guest_data_for_migration():
        ...     resolver.associate_account(account_id)
    """

    def __init__(
        self,
        store: KeyValueStore,
        resolver: KeyNamespaceResolver,
        codec: RecordCodec | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._resolver = resolver
        self._codec = codec or RecordCodec()

    @property
    def codec(self) -> RecordCodec:
        return self._codec

    async def has_local_data(self) -> bool:
        """
        True if any registered key holds a non-empty guest record.

        Side-effect free and safe to call repeatedly.
        """
        with self._tracer.span(
            "guestmigrate.inventory.has_local_data",
            {ATTR_RECORD_COUNT: len(self._codec.registry)},
        ):
            for key in self._codec.registry.keys:
                record = await self.read_guest_record(key)
                if record is not None and not record.is_empty():
                    return True
            return False

    async def has_guest_data_for_migration(self) -> bool:
        """
        Same answer as has_local_data(), for use in the sign-in flow.

        Must be called BEFORE the account is associated with the session:
        after association, "current namespace" checks elsewhere in an app
        would look at the account namespace and miss guest data.

        Raises:
            AccountAlreadyAssociatedError: If the resolver is already bound
                to an account.
        """
        account_id = self._resolver.account_id
        if account_id is not None:
            raise AccountAlreadyAssociatedError(account_id)
        return await self.has_local_data()

    async def guest_keys(self) -> list[str]:
        """Registered keys that hold any guest payload, in registry order."""
        keys: list[str] = []
        for key in self._codec.registry.keys:
            try:
                payload = await self._store.get(self._resolver.resolve(key))
            except MigrationError as e:
                logger.warning("Could not read guest key %s: %s", key, e)
                continue
            if payload is not None:
                keys.append(key)
        return keys

    async def read_guest_record(self, key: str) -> BaseUserRecord | None:
        """
        Read and decode the guest record under ``key``.

        Returns None if the key is absent, unreadable or undecodable.
        """
        physical_key = self._resolver.resolve(key)
        try:
            payload = await self._store.get(physical_key)
            if payload is None:
                return None
            return self._codec.decode(key, payload)
        except MigrationError as e:
            logger.warning("Ignoring guest data under %s: %s", physical_key, e)
            return None


__all__ = ["LocalDataInventory"]
