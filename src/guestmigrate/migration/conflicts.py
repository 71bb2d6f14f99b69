"""
Conflict detection and resolution between guest and remote records.

Default policy (REMOTE_WINS): the account's remote data is more trusted than
data entered anonymously, so fields that exist remotely win. Local values
only fill fields that are empty remotely, and an entirely empty remote record
keeps the local one. Keys listed in MigrationConfig.strategy_overrides may
use LOCAL_WINS or NEWEST_WINS instead.

Cases the policy cannot decide (undecodable remote payload, missing
timestamps for NEWEST_WINS) never block a migration: they produce a warning
and fall back to keeping remote data or to the default policy.

Resolution is a pure function of (key, guest record, remote record, config).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from guestmigrate.migration.models import (
    ConflictAction,
    ConflictResolution,
    ConflictStrategy,
    MigrationConfig,
    MigrationRecord,
    SyncConflict,
)
from guestmigrate.records import BaseUserRecord

logger = logging.getLogger(__name__)

KEEP_REMOTE = ConflictResolution(ConflictAction.KEEP_REMOTE)
KEEP_LOCAL = ConflictResolution(ConflictAction.KEEP_LOCAL)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class ConflictResolver:
    """
    Applies the configured conflict strategy per key.

    Example:
        >>> resolver = ConflictResolver(MigrationConfig())
        >>> conflict = resolver.resolve("body_metrics", local, remote)
        >>> conflict.resolution.action
        <ConflictAction.MERGE: 'merge'>
    """

    def __init__(self, config: MigrationConfig | None = None) -> None:
        self._config = config or MigrationConfig()

    def detect(self, record: MigrationRecord) -> bool:
        """
        True if ``record`` needs a policy decision.

        There is nothing to decide when no remote copy exists or when both
        sides already hold the same content.
        """
        if record.guest_value is None or record.remote_value is None:
            return False
        return not record.in_sync

    def resolve(
        self,
        key: str,
        guest_value: BaseUserRecord,
        remote_value: BaseUserRecord,
    ) -> SyncConflict:
        """Decide a conflict for ``key`` using the key's configured strategy."""
        strategy = self._config.strategy_for(key)
        conflict = SyncConflict(key=key, guest_value=guest_value, remote_value=remote_value)

        if strategy is ConflictStrategy.NEWEST_WINS:
            resolution = self._newest_wins(conflict, guest_value, remote_value)
            if resolution is not None:
                conflict.resolution = resolution
                return conflict
            strategy = self._fallback_strategy()

        if strategy is ConflictStrategy.LOCAL_WINS:
            conflict.resolution = KEEP_REMOTE if guest_value.is_empty() else KEEP_LOCAL
        else:
            conflict.resolution = self._remote_wins(guest_value, remote_value)
        return conflict

    def resolve_undecodable_remote(
        self,
        key: str,
        guest_value: BaseUserRecord | None,
    ) -> SyncConflict:
        """Keep remote data that could not be decoded, with a warning."""
        warning = f"{key}: remote record could not be decoded; kept remote data"
        logger.warning("Remote record for %s could not be decoded, keeping remote", key)
        return SyncConflict(
            key=key,
            guest_value=guest_value,
            remote_value=None,
            resolution=KEEP_REMOTE,
            warning=warning,
        )

    @staticmethod
    def _remote_wins(local: BaseUserRecord, remote: BaseUserRecord) -> ConflictResolution:
        if remote.is_empty():
            return KEEP_LOCAL
        if local.is_empty():
            return KEEP_REMOTE
        merged = remote.merged_with(local)
        if merged.same_content(remote):
            return KEEP_REMOTE
        if merged.same_content(local):
            return KEEP_LOCAL
        return ConflictResolution(ConflictAction.MERGE, merged_value=merged)

    def _newest_wins(
        self,
        conflict: SyncConflict,
        local: BaseUserRecord,
        remote: BaseUserRecord,
    ) -> ConflictResolution | None:
        if local.is_empty():
            return KEEP_REMOTE
        if local.updated_at is None or remote.updated_at is None:
            conflict.warning = (
                f"{conflict.key}: missing timestamp for newest-wins; applied default policy"
            )
            logger.warning("Missing timestamp for %s, applying default policy", conflict.key)
            return None
        if _aware(local.updated_at) > _aware(remote.updated_at):
            return KEEP_LOCAL
        return KEEP_REMOTE

    def _fallback_strategy(self) -> ConflictStrategy:
        default = self._config.default_strategy
        if default is ConflictStrategy.NEWEST_WINS:
            return ConflictStrategy.REMOTE_WINS
        return default


__all__ = ["ConflictResolver"]
