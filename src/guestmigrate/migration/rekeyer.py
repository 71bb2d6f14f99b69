"""
Guest-to-Account Rekeyer.

Moves guest-namespaced payloads into an account namespace on the local
store without contacting any remote service.

Per key the order is strictly:

    1. read and decode guest payload
    2. write account payload
    3. read account payload back and compare
    4. record the key in the account's pending-commit marker
    5. delete guest payload

Empty records are skipped and undecodable payloads are reported as
warnings; both stay in the guest namespace and never reach the pending
marker. A failure at any step leaves the guest payload where it was, so
an interrupted run can simply be repeated. The pending-commit marker is a
JSON list stored under the account namespace; it tells the orchestrator
which account-local keys still have to be reconciled with remote storage, even
when they were rekeyed by an earlier call or a crashed attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from guestmigrate.exceptions import (
    MigrationError,
    MissingAccountIdError,
    RecordDecodeError,
    StorageError,
)
from guestmigrate.migration.models import RekeyResult
from guestmigrate.namespace import KeyNamespaceResolver
from guestmigrate.observability import (
    ATTR_ACCOUNT_ID,
    ATTR_RECORD_COUNT,
    ATTR_RECORD_KEY,
    Tracer,
    create_tracer,
)
from guestmigrate.records import RecordCodec
from guestmigrate.serialization import json_dumps, json_loads
from guestmigrate.storage.interface import KeyValueStore

logger = logging.getLogger(__name__)


class GuestToAccountRekeyer:
    """
    Copies guest data into an account namespace, write-then-delete.

    Example:
        >>> rekeyer = GuestToAccountRekeyer(store, resolver)
        >>> result = await rekeyer.migrate_guest_data_to_user("acct-1")
        >>> result.migrated_keys
        ['body_metrics']
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
        """
        Initialize the rekeyer.

        Args:
            store: Local key-value store holding both namespaces
            resolver: Resolver producing guest and account physical keys
            codec: Codec used to vet guest payloads; its registry lists the
                logical keys to consider (default: built-in record kinds)
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._resolver = resolver
        self._codec = codec or RecordCodec()
        self._registry = self._codec.registry
        self._marker_lock = asyncio.Lock()

    async def migrate_guest_data_to_user(self, account_id: str) -> RekeyResult:
        """
        Rekey every guest key into ``account_id``'s namespace.

        Keys that fail at any step stay in the guest namespace and are
        reported in ``errors``; the remaining keys are still processed.
        Empty records are left alone. Undecodable payloads are left alone
        and reported in ``warnings``.

        Returns:
            RekeyResult with success=True iff every key either migrated or
            had nothing to migrate.

        Raises:
            MissingAccountIdError: If account_id is empty.
        """
        if not isinstance(account_id, str) or not account_id.strip():
            raise MissingAccountIdError("migrate_guest_data_to_user")

        result = RekeyResult()
        with self._tracer.span(
            "guestmigrate.rekeyer.migrate_guest_data_to_user",
            {ATTR_ACCOUNT_ID: account_id, ATTR_RECORD_COUNT: len(self._registry)},
        ):
            for key in self._registry.keys:
                try:
                    migrated = await self._rekey(account_id, key)
                except RecordDecodeError as e:
                    logger.warning("Leaving undecodable guest data under %s: %s", key, e)
                    result.warnings.append(f"{key}: {e.message}")
                    continue
                except MigrationError as e:
                    logger.warning("Failed to rekey %s for account %s: %s", key, account_id, e)
                    result.errors.append(f"{key}: {e.message}")
                    continue
                if migrated:
                    result.migrated_keys.append(key)

            result.success = not result.errors
            logger.info(
                "Rekeyed %d guest key(s) into account %s (%d error(s))",
                len(result.migrated_keys),
                account_id,
                len(result.errors),
            )
        return result

    async def _rekey(self, account_id: str, key: str) -> bool:
        guest_key = self._resolver.resolve(key)
        account_key = self._resolver.resolve(key, account_id)

        with self._tracer.span(
            "guestmigrate.rekeyer.rekey",
            {ATTR_ACCOUNT_ID: account_id, ATTR_RECORD_KEY: key},
        ):
            payload = await self._store.get(guest_key)
            if payload is None:
                return False
            if self._codec.decode(key, payload).is_empty():
                logger.debug("Skipping empty guest record %s", guest_key)
                return False

            # An existing account-local copy is a cache of remote data and
            # is reconciled with remote by the orchestrator, so overwrite it.
            await self._store.set(account_key, payload)

            written = await self._store.get(account_key)
            if written != payload:
                raise StorageError(
                    "Account copy does not match guest copy after write",
                    account_id=account_id,
                    key=key,
                )

            await self._add_pending(account_id, [key])
            await self._store.delete(guest_key)
            logger.debug("Rekeyed %s -> %s", guest_key, account_key)
            return True

    async def pending_keys(self, account_id: str) -> list[str]:
        """
        Keys rekeyed into ``account_id`` that are not yet committed remotely.

        Raises:
            StorageError: If the marker cannot be read or is corrupt.
        """
        payload = await self._store.get(self._resolver.pending_key(account_id))
        if payload is None:
            return []
        try:
            keys = json_loads(payload)
        except ValueError as e:
            raise StorageError(
                "Pending-commit marker is corrupt", account_id=account_id
            ) from e
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise StorageError("Pending-commit marker is corrupt", account_id=account_id)
        return keys

    async def clear_pending(self, account_id: str, keys: Iterable[str]) -> None:
        """Remove ``keys`` from the pending-commit marker of ``account_id``."""
        done = set(keys)
        if not done:
            return
        async with self._marker_lock:
            remaining = [k for k in await self.pending_keys(account_id) if k not in done]
            marker_key = self._resolver.pending_key(account_id)
            if remaining:
                await self._store.set(marker_key, json_dumps(remaining).encode("utf-8"))
            else:
                await self._store.delete(marker_key)

    async def _add_pending(self, account_id: str, keys: Iterable[str]) -> None:
        async with self._marker_lock:
            pending = await self.pending_keys(account_id)
            for key in keys:
                if key not in pending:
                    pending.append(key)
            await self._store.set(
                self._resolver.pending_key(account_id),
                json_dumps(pending).encode("utf-8"),
            )


__all__ = ["GuestToAccountRekeyer"]
