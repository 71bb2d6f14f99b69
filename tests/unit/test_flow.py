"""
Unit tests for GuestClaimFlow.

Tests for:
- Checking for guest data before associating the account
- Notices for new accounts, returning accounts and partial failures
- Sessions without guest data
- Resuming keys left pending by an earlier attempt
"""

from __future__ import annotations

import pytest

from guestmigrate.exceptions import (
    AccountAlreadyAssociatedError,
    MissingAccountIdError,
    RemoteStorageError,
)
from guestmigrate.migration import MigrationEngine
from guestmigrate.migration.flow import (
    NEW_ACCOUNT_NOTICE,
    PARTIAL_FAILURE_NOTICE,
    RETURNING_ACCOUNT_NOTICE,
)
from guestmigrate.records import ProfileRecord
from guestmigrate.storage import InMemoryAccountRecordStore


class FailingProfileStore(InMemoryAccountRecordStore):
    """Remote store that rejects writes of the profile record."""

    def __init__(self) -> None:
        super().__init__(enable_tracing=False)
        self.fail = True

    async def put_account_record(self, account_id: str, key: str, value: bytes) -> None:
        if self.fail and key == "profile":
            raise RemoteStorageError("service unavailable", account_id=account_id, key=key)
        await super().put_account_record(account_id, key, value)


class TestClaimFlow:
    """The post-authentication claim sequence."""

    @pytest.mark.asyncio
    async def test_new_account_claims_guest_data(
        self, engine, local_store, remote_store, seed_guest, body_metrics, account_id
    ):
        await seed_guest("body_metrics", body_metrics)

        outcome = await engine.flow.run(account_id, is_new_account=True)

        assert outcome.success is True
        assert outcome.had_guest_data is True
        assert outcome.notice == NEW_ACCOUNT_NOTICE
        assert outcome.migration.migrated_keys == ["body_metrics"]
        assert engine.resolver.account_id == account_id
        assert "guest:body_metrics" not in local_store.snapshot()
        assert "body_metrics" in remote_store.records_for(account_id)

    @pytest.mark.asyncio
    async def test_returning_account_notice(self, engine, seed_guest, body_metrics, account_id):
        await seed_guest("body_metrics", body_metrics)

        outcome = await engine.flow.run(account_id)

        assert outcome.notice == RETURNING_ACCOUNT_NOTICE

    @pytest.mark.asyncio
    async def test_no_guest_data(self, engine, history, account_id):
        outcome = await engine.flow.run(account_id, is_new_account=True)

        assert outcome.success is True
        assert outcome.had_guest_data is False
        assert outcome.migration is None
        assert outcome.notice is None
        assert engine.resolver.account_id == account_id
        assert await history.list_attempts() == []

    @pytest.mark.asyncio
    async def test_session_already_associated_raises(self, engine, account_id):
        engine.resolver.associate_account("earlier-account")

        with pytest.raises(AccountAlreadyAssociatedError):
            await engine.flow.run(account_id)

    @pytest.mark.asyncio
    async def test_missing_account_id_raises(self, engine, seed_guest, body_metrics):
        await seed_guest("body_metrics", body_metrics)

        with pytest.raises(MissingAccountIdError):
            await engine.flow.run("")

    @pytest.mark.asyncio
    async def test_backup_taken_before_rekeying(
        self, engine, local_store, seed_guest, body_metrics, account_id
    ):
        await seed_guest("body_metrics", body_metrics)
        backups_seen = []

        def watch(progress):
            backups_seen.extend(k for k in local_store.snapshot() if k.startswith("backup:"))

        engine.state_store.on_progress(watch)

        await engine.flow.run(account_id)

        assert backups_seen
        assert not any(k.startswith("backup:") for k in local_store.snapshot())


class TestPartialFailure:
    """Claims that cannot commit everything."""

    @pytest.mark.asyncio
    async def test_partial_failure_notice(
        self, local_store, history, seed_guest, body_metrics, account_id
    ):
        remote = FailingProfileStore()
        engine = MigrationEngine.create(local_store, remote, history, enable_tracing=False)
        await seed_guest("profile", ProfileRecord(first_name="Ada"))
        await seed_guest("body_metrics", body_metrics)

        outcome = await engine.flow.run(account_id, is_new_account=True)

        assert outcome.success is False
        assert outcome.notice == PARTIAL_FAILURE_NOTICE
        assert outcome.migration.migrated_keys == ["body_metrics"]

    @pytest.mark.asyncio
    async def test_pending_keys_resumed_on_next_sign_in(
        self, local_store, history, seed_guest, account_id
    ):
        remote = FailingProfileStore()
        first = MigrationEngine.create(local_store, remote, history, enable_tracing=False)
        await seed_guest("profile", ProfileRecord(first_name="Ada"))
        await first.flow.run(account_id)

        # Next launch: fresh session, no guest data left, remote healthy again.
        remote.fail = False
        second = MigrationEngine.create(local_store, remote, history, enable_tracing=False)
        outcome = await second.flow.run(account_id)

        assert outcome.had_guest_data is False
        assert outcome.migration is not None
        assert outcome.migration.migrated_keys == ["profile"]
        assert "profile" in remote.records_for(account_id)
