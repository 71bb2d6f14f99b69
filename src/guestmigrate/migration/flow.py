"""
Guest claim flow: what a sign-in or sign-up screen runs after authentication.

The ordering below is the contract the rest of the engine relies on:

    1. ask the inventory for guest data   (session still anonymous)
    2. associate the account with the session
    3. run the remote migration, whose first step backs up the guest data
       and rekeys it into the account namespace

Checking for guest data after step 2 is refused by the inventory, because
callers that look at "the current namespace" would then see the account
namespace and miss the guest data entirely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from guestmigrate.exceptions import StorageError
from guestmigrate.migration.inventory import LocalDataInventory
from guestmigrate.migration.models import MigrationResult
from guestmigrate.migration.orchestrator import RemoteMigrationOrchestrator
from guestmigrate.migration.rekeyer import GuestToAccountRekeyer
from guestmigrate.namespace import KeyNamespaceResolver
from guestmigrate.observability import ATTR_ACCOUNT_ID, Tracer, create_tracer

logger = logging.getLogger(__name__)

NEW_ACCOUNT_NOTICE = "Your guest data has been saved to your new account."
RETURNING_ACCOUNT_NOTICE = "Your guest data has been added to your account."
PARTIAL_FAILURE_NOTICE = "Some of your data could not be synced yet. We will try again next time."


@dataclass(frozen=True)
class ClaimOutcome:
    """
    What happened when an account claimed guest data.

    The calling screen always continues to the next step; ``notice`` is a
    non-blocking message to show, or None when there is nothing to say.
    """

    account_id: str
    had_guest_data: bool
    migration: MigrationResult | None = None
    notice: str | None = None

    @property
    def success(self) -> bool:
        return self.migration is None or self.migration.success


class GuestClaimFlow:
    """
    Runs the claim sequence after a successful sign-in or sign-up.

    Example:
        >>> flow = GuestClaimFlow(resolver, inventory, rekeyer, orchestrator)
        >>> outcome = await flow.run(account_id, is_new_account=True)
        >>> if outcome.notice:
        ...     show_toast(outcome.notice)
    """

    def __init__(
        self,
        resolver: KeyNamespaceResolver,
        inventory: LocalDataInventory,
        rekeyer: GuestToAccountRekeyer,
        orchestrator: RemoteMigrationOrchestrator,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._resolver = resolver
        self._inventory = inventory
        self._rekeyer = rekeyer
        self._orchestrator = orchestrator

    async def run(self, account_id: str, *, is_new_account: bool = False) -> ClaimOutcome:
        """
        Claim guest data for ``account_id``.

        ``is_new_account`` only changes the notice text.

        Raises:
            MissingAccountIdError: If account_id is empty.
            AccountAlreadyAssociatedError: If the session was bound to an
                account before the flow ran.
        """
        with self._tracer.span("guestmigrate.flow.run", {ATTR_ACCOUNT_ID: account_id}):
            # Must run while the session is still anonymous.
            had_guest_data = await self._inventory.has_guest_data_for_migration()
            self._resolver.associate_account(account_id)

            try:
                pending = await self._rekeyer.pending_keys(account_id)
            except StorageError as e:
                logger.warning("Could not read pending keys for account %s: %s", account_id, e)
                pending = []

            if not had_guest_data and not pending:
                logger.debug("No guest data to claim for account %s", account_id)
                return ClaimOutcome(account_id=account_id, had_guest_data=False)

            migration = await self._orchestrator.start_profile_migration(account_id)

            if migration.success:
                notice = NEW_ACCOUNT_NOTICE if is_new_account else RETURNING_ACCOUNT_NOTICE
            else:
                notice = PARTIAL_FAILURE_NOTICE
            logger.info(
                "Claim for account %s finished: success=%s, %d key(s) migrated",
                account_id,
                migration.success,
                len(migration.migrated_keys),
            )
            return ClaimOutcome(
                account_id=account_id,
                had_guest_data=had_guest_data,
                migration=migration,
                notice=notice,
            )


__all__ = [
    "ClaimOutcome",
    "GuestClaimFlow",
    "NEW_ACCOUNT_NOTICE",
    "RETURNING_ACCOUNT_NOTICE",
    "PARTIAL_FAILURE_NOTICE",
]
