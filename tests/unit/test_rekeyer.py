"""
Unit tests for GuestToAccountRekeyer.

Tests for:
- Moving guest keys into the account namespace
- Skipping empty records and leaving undecodable payloads in place
- No data loss when writes fail for some keys
- Write-before-delete ordering, including a crash before the delete
- The pending-commit marker
"""

from __future__ import annotations

import pytest

from guestmigrate.exceptions import MissingAccountIdError, StorageError
from guestmigrate.migration import GuestToAccountRekeyer
from guestmigrate.observability import MockTracer
from guestmigrate.records import BodyMetricsRecord, ProfileRecord
from guestmigrate.storage import InMemoryKeyValueStore


class FailingWriteStore(InMemoryKeyValueStore):
    """Store that fails writes to selected physical keys."""

    def __init__(self, failing_keys: set[str]) -> None:
        super().__init__(enable_tracing=False)
        self.failing_keys = failing_keys

    async def set(self, key: str, value: bytes) -> None:
        if key in self.failing_keys:
            raise StorageError("write failed", key=key)
        await super().set(key, value)


class CrashBeforeDeleteStore(InMemoryKeyValueStore):
    """Store that dies on delete, and records the order of operations."""

    def __init__(self) -> None:
        super().__init__(enable_tracing=False)
        self.operations: list[tuple[str, str]] = []
        self.account_value_at_delete: dict[str, bytes | None] = {}

    async def set(self, key: str, value: bytes) -> None:
        self.operations.append(("set", key))
        await super().set(key, value)

    async def delete(self, key: str) -> None:
        self.operations.append(("delete", key))
        logical = key.split(":", 1)[1]
        self.account_value_at_delete[logical] = self.snapshot().get(f"user:acct-1:{logical}")
        raise StorageError("process killed", key=key)


class CorruptingStore(InMemoryKeyValueStore):
    """Store that silently corrupts writes to the account namespace."""

    async def set(self, key: str, value: bytes) -> None:
        if key.startswith("user:") and not key.endswith("_migration_pending"):
            value = value + b" "
        await super().set(key, value)


def make_rekeyer(store, resolver) -> GuestToAccountRekeyer:
    return GuestToAccountRekeyer(store, resolver, enable_tracing=False)


class TestMigrateGuestDataToUser:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_moves_guest_key(
        self, local_store, resolver, seed_guest, body_metrics, account_id
    ):
        payload = await seed_guest("body_metrics", body_metrics)

        result = await make_rekeyer(local_store, resolver).migrate_guest_data_to_user(account_id)

        data = local_store.snapshot()
        assert result.success is True
        assert result.migrated_keys == ["body_metrics"]
        assert result.errors == []
        assert data[f"user:{account_id}:body_metrics"] == payload
        assert "guest:body_metrics" not in data

    @pytest.mark.asyncio
    async def test_nothing_to_migrate_is_success(self, local_store, resolver, account_id):
        result = await make_rekeyer(local_store, resolver).migrate_guest_data_to_user(account_id)

        assert result.success is True
        assert result.migrated_keys == []

    @pytest.mark.asyncio
    async def test_is_safely_repeatable(
        self, local_store, resolver, seed_guest, body_metrics, account_id
    ):
        await seed_guest("body_metrics", body_metrics)
        rekeyer = make_rekeyer(local_store, resolver)

        await rekeyer.migrate_guest_data_to_user(account_id)
        second = await rekeyer.migrate_guest_data_to_user(account_id)

        assert second.success is True
        assert second.migrated_keys == []

    @pytest.mark.asyncio
    async def test_empty_record_left_in_guest_namespace(
        self, local_store, resolver, seed_guest, body_metrics, account_id
    ):
        empty = await seed_guest("profile", ProfileRecord())
        await seed_guest("body_metrics", body_metrics)
        rekeyer = make_rekeyer(local_store, resolver)

        result = await rekeyer.migrate_guest_data_to_user(account_id)

        data = local_store.snapshot()
        assert result.success is True
        assert result.migrated_keys == ["body_metrics"]
        assert data["guest:profile"] == empty
        assert f"user:{account_id}:profile" not in data
        assert await rekeyer.pending_keys(account_id) == ["body_metrics"]

    @pytest.mark.asyncio
    async def test_undecodable_payload_reported_as_warning(
        self, local_store, resolver, seed_guest, body_metrics, account_id
    ):
        await local_store.set("guest:profile", b"{broken")
        await seed_guest("body_metrics", body_metrics)
        rekeyer = make_rekeyer(local_store, resolver)

        result = await rekeyer.migrate_guest_data_to_user(account_id)

        data = local_store.snapshot()
        assert result.success is True
        assert result.errors == []
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("profile:")
        assert data["guest:profile"] == b"{broken"
        assert f"user:{account_id}:profile" not in data
        assert await rekeyer.pending_keys(account_id) == ["body_metrics"]

    @pytest.mark.asyncio
    async def test_missing_account_id_raises(self, local_store, resolver):
        with pytest.raises(MissingAccountIdError):
            await make_rekeyer(local_store, resolver).migrate_guest_data_to_user("")

    @pytest.mark.asyncio
    async def test_creates_span(self, local_store, resolver, account_id):
        tracer = MockTracer()
        rekeyer = GuestToAccountRekeyer(local_store, resolver, tracer=tracer)

        await rekeyer.migrate_guest_data_to_user(account_id)

        assert "guestmigrate.rekeyer.migrate_guest_data_to_user" in tracer.span_names


class TestNoDataLoss:
    """Keys that fail to migrate stay in the guest namespace unmodified."""

    @pytest.mark.parametrize(
        "failing",
        [
            {"user:acct-1:profile"},
            {"user:acct-1:body_metrics"},
            {"user:acct-1:profile", "user:acct-1:body_metrics"},
            {"user:acct-1:_migration_pending"},
        ],
    )
    @pytest.mark.asyncio
    async def test_failed_keys_remain_in_guest_namespace(self, resolver, codec, failing):
        store = FailingWriteStore(failing_keys=set())
        profile = codec.encode(ProfileRecord(first_name="Ada"))
        metrics = codec.encode(BodyMetricsRecord(weight_kg=82))
        await store.set("guest:profile", profile)
        await store.set("guest:body_metrics", metrics)
        store.failing_keys = failing

        result = await make_rekeyer(store, resolver).migrate_guest_data_to_user("acct-1")

        data = store.snapshot()
        originals = {"profile": profile, "body_metrics": metrics}
        failed = {key for key in originals if key not in result.migrated_keys}
        assert failed
        assert result.success is False
        assert len(result.errors) == len(failed)
        for key in failed:
            assert data[f"guest:{key}"] == originals[key]
        for key in result.migrated_keys:
            assert f"guest:{key}" not in data

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_other_keys(self, resolver, codec):
        store = FailingWriteStore(failing_keys=set())
        await store.set("guest:profile", codec.encode(ProfileRecord(first_name="Ada")))
        await store.set("guest:body_metrics", codec.encode(BodyMetricsRecord(weight_kg=82)))
        store.failing_keys = {"user:acct-1:profile"}

        result = await make_rekeyer(store, resolver).migrate_guest_data_to_user("acct-1")

        assert result.migrated_keys == ["body_metrics"]
        assert result.errors[0].startswith("profile:")

    @pytest.mark.asyncio
    async def test_verification_mismatch_keeps_guest_copy(self, resolver, codec):
        store = CorruptingStore(enable_tracing=False)
        payload = codec.encode(BodyMetricsRecord(weight_kg=82))
        await store.set("guest:body_metrics", payload)

        result = await make_rekeyer(store, resolver).migrate_guest_data_to_user("acct-1")

        assert result.success is False
        assert store.snapshot()["guest:body_metrics"] == payload


class TestWriteBeforeDelete:
    """The account copy exists and matches before the guest copy is removed."""

    @pytest.mark.asyncio
    async def test_account_copy_written_before_delete(self, resolver, codec):
        store = CrashBeforeDeleteStore()
        payload = codec.encode(BodyMetricsRecord(weight_kg=82))
        await store.set("guest:body_metrics", payload)
        store.operations.clear()

        await make_rekeyer(store, resolver).migrate_guest_data_to_user("acct-1")

        assert store.operations.index(("set", "user:acct-1:body_metrics")) < store.operations.index(
            ("delete", "guest:body_metrics")
        )
        assert store.account_value_at_delete["body_metrics"] == payload

    @pytest.mark.asyncio
    async def test_crash_between_write_and_delete_keeps_guest_copy(self, resolver, codec):
        store = CrashBeforeDeleteStore()
        payload = codec.encode(BodyMetricsRecord(weight_kg=82))
        await store.set("guest:body_metrics", payload)

        result = await make_rekeyer(store, resolver).migrate_guest_data_to_user("acct-1")

        assert result.success is False
        assert result.migrated_keys == []
        assert store.snapshot()["guest:body_metrics"] == payload

    @pytest.mark.asyncio
    async def test_retry_after_crash_completes(self, resolver, codec):
        crashing = CrashBeforeDeleteStore()
        payload = codec.encode(BodyMetricsRecord(weight_kg=82))
        await crashing.set("guest:body_metrics", payload)
        await make_rekeyer(crashing, resolver).migrate_guest_data_to_user("acct-1")

        # Restart on a healthy store with the data left behind by the crash.
        healthy = InMemoryKeyValueStore(crashing.snapshot(), enable_tracing=False)
        result = await make_rekeyer(healthy, resolver).migrate_guest_data_to_user("acct-1")

        assert result.migrated_keys == ["body_metrics"]
        assert healthy.snapshot()["user:acct-1:body_metrics"] == payload
        assert "guest:body_metrics" not in healthy.snapshot()


class TestPendingMarker:
    """Tests for the pending-commit marker."""

    @pytest.mark.asyncio
    async def test_migrated_keys_are_pending(
        self, local_store, resolver, seed_guest, body_metrics, account_id
    ):
        await seed_guest("body_metrics", body_metrics)
        await seed_guest("profile", ProfileRecord(first_name="Ada"))
        rekeyer = make_rekeyer(local_store, resolver)

        await rekeyer.migrate_guest_data_to_user(account_id)

        assert await rekeyer.pending_keys(account_id) == ["profile", "body_metrics"]

    @pytest.mark.asyncio
    async def test_clear_pending(self, local_store, resolver, seed_guest, body_metrics, account_id):
        await seed_guest("body_metrics", body_metrics)
        await seed_guest("profile", ProfileRecord(first_name="Ada"))
        rekeyer = make_rekeyer(local_store, resolver)
        await rekeyer.migrate_guest_data_to_user(account_id)

        await rekeyer.clear_pending(account_id, ["profile"])
        assert await rekeyer.pending_keys(account_id) == ["body_metrics"]

        await rekeyer.clear_pending(account_id, ["body_metrics"])
        assert await rekeyer.pending_keys(account_id) == []
        assert f"user:{account_id}:_migration_pending" not in local_store.snapshot()

    @pytest.mark.asyncio
    async def test_corrupt_marker_raises(self, local_store, resolver, account_id):
        await local_store.set(f"user:{account_id}:_migration_pending", b"not json")

        with pytest.raises(StorageError):
            await make_rekeyer(local_store, resolver).pending_keys(account_id)
