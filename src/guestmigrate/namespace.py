"""
Key namespace resolution for local storage.

Logical keys ("profile", "body_metrics", ...) are stored under one of two
namespaces:

    guest:<key>              data created before sign-in
    user:<account_id>:<key>  data owned by an authenticated account

resolve() is a pure function of its arguments. The resolver also tracks
which account (if any) the current session is associated with; that
association is what makes the order of guest-data checks matter (see
LocalDataInventory.has_guest_data_for_migration).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from guestmigrate.exceptions import InvalidKeyError, MissingAccountIdError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NamespaceConfig:
    """
    Prefixes used to build physical storage keys.

    Attributes:
        guest_prefix: Prefix for the anonymous namespace.
        account_prefix: Prefix for account namespaces (followed by the id).
        separator: Separator between prefix, account id and logical key.
        backup_prefix: Prefix for pre-migration guest snapshots.
        pending_marker: Reserved logical key holding keys awaiting remote commit.
    """

    guest_prefix: str = "guest"
    account_prefix: str = "user"
    separator: str = ":"
    backup_prefix: str = "backup"
    pending_marker: str = "_migration_pending"

    def __post_init__(self) -> None:
        for name in ("guest_prefix", "account_prefix", "separator", "backup_prefix"):
            if not getattr(self, name):
                raise ValueError(f"{name} must not be empty")
        if self.guest_prefix == self.account_prefix:
            raise ValueError("guest_prefix and account_prefix must differ")


class KeyNamespaceResolver:
    """
    Maps logical keys to physical storage keys.

    Example:
        >>> resolver = KeyNamespaceResolver()
        >>> resolver.resolve("profile")
        'guest:profile'
        >>> resolver.resolve("profile", "acct-1")
        'user:acct-1:profile'
    """

    def __init__(self, config: NamespaceConfig | None = None) -> None:
        self._config = config or NamespaceConfig()
        self._account_id: str | None = None

    @property
    def config(self) -> NamespaceConfig:
        return self._config

    @property
    def account_id(self) -> str | None:
        """Account associated with the current session, or None for guests."""
        return self._account_id

    @property
    def is_guest(self) -> bool:
        return self._account_id is None

    def associate_account(self, account_id: str) -> None:
        """Bind the session to ``account_id`` (after successful sign-in)."""
        self._account_id = self._require_account(account_id, "associate_account")
        logger.info("Session associated with account %s", account_id)

    def clear_account(self) -> None:
        """Return the session to the guest namespace (sign-out)."""
        if self._account_id is not None:
            logger.info("Session dissociated from account %s", self._account_id)
        self._account_id = None

    def resolve(self, key: str, account_id: str | None = None) -> str:
        """
        Return the physical key for ``key``.

        Args:
            key: Logical key. Must be non-empty.
            account_id: Account namespace to use; guest namespace if None.

        Raises:
            InvalidKeyError: If key is empty or not a string.
            MissingAccountIdError: If account_id is an empty string.
        """
        if not isinstance(key, str) or not key.strip():
            raise InvalidKeyError(key)
        sep = self._config.separator
        if account_id is None:
            return f"{self._config.guest_prefix}{sep}{key}"
        account_id = self._require_account(account_id, "resolve")
        return f"{self._config.account_prefix}{sep}{account_id}{sep}{key}"

    def session_key(self, key: str) -> str:
        """Resolve ``key`` in whatever namespace the session currently uses."""
        return self.resolve(key, self._account_id)

    def pending_key(self, account_id: str) -> str:
        """Physical key of the pending-commit marker for ``account_id``."""
        return self.resolve(self._config.pending_marker, account_id)

    def backup_key(self, attempt_id: UUID) -> str:
        """Physical key of the guest snapshot taken by attempt ``attempt_id``."""
        return f"{self._config.backup_prefix}{self._config.separator}{attempt_id}"

    @staticmethod
    def _require_account(account_id: str, operation: str) -> str:
        if not isinstance(account_id, str) or not account_id.strip():
            raise MissingAccountIdError(operation)
        return account_id


__all__ = [
    "NamespaceConfig",
    "KeyNamespaceResolver",
]
