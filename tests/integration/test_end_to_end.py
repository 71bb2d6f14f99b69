"""
End-to-end claim of guest data over real storage.

Local data and history live in an on-device SQLite file; account records
live in a separate database reached through SQLAlchemy.
"""

from __future__ import annotations

import pytest

from guestmigrate.migration import ConflictAction, MigrationEngine
from guestmigrate.migration.flow import NEW_ACCOUNT_NOTICE
from guestmigrate.records import (
    BodyMetricsRecord,
    MealLogsRecord,
    ProfileRecord,
    RecordCodec,
)

pytestmark = pytest.mark.sqlite


@pytest.fixture
def codec() -> RecordCodec:
    return RecordCodec()


@pytest.fixture
def make_engine(sqlite_kv_store, sqlite_history, sqlalchemy_remote):
    """Build a fresh engine over the shared databases (one per app launch)."""

    def _make() -> MigrationEngine:
        return MigrationEngine.create(
            sqlite_kv_store, sqlalchemy_remote, sqlite_history, enable_tracing=False
        )

    return _make


def meal_logs(*entries: tuple[str, float]) -> MealLogsRecord:
    return MealLogsRecord.model_validate(
        {"entries": [{"id": entry_id, "calories": calories} for entry_id, calories in entries]}
    )


class TestEndToEnd:
    """Sign-up after using the app as a guest."""

    @pytest.mark.asyncio
    async def test_reference_scenario(self, make_engine, sqlite_kv_store, sqlalchemy_remote, codec):
        await sqlite_kv_store.set(
            "guest:body_metrics", codec.encode(BodyMetricsRecord(weight_kg=82))
        )
        engine = make_engine()

        assert await engine.orchestrator.check_profile_migration_needed("acct-1") is True

        outcome = await engine.flow.run("acct-1", is_new_account=True)

        assert outcome.notice == NEW_ACCOUNT_NOTICE
        assert outcome.migration.migrated_keys == ["body_metrics"]
        assert outcome.migration.errors == []
        assert outcome.migration.warnings == []
        assert await sqlite_kv_store.get("guest:body_metrics") is None
        payload = await sqlalchemy_remote.get_account_record("acct-1", "body_metrics")
        assert codec.decode("body_metrics", payload).weight_kg == 82
        assert await engine.orchestrator.check_profile_migration_needed("acct-1") is False

    @pytest.mark.asyncio
    async def test_merges_with_existing_account_data(
        self, make_engine, sqlite_kv_store, sqlalchemy_remote, codec
    ):
        guest_profile = ProfileRecord(first_name="Ada", age=36)
        remote_profile = ProfileRecord(first_name="Ada", last_name="Lovelace")
        await sqlite_kv_store.set("guest:profile", codec.encode(guest_profile))
        await sqlite_kv_store.set("guest:meal_logs", codec.encode(meal_logs(("m1", 500))))
        await sqlalchemy_remote.put_account_record(
            "acct-1", "profile", codec.encode(remote_profile)
        )
        await sqlalchemy_remote.put_account_record(
            "acct-1", "meal_logs", codec.encode(meal_logs(("m0", 300)))
        )

        outcome = await make_engine().flow.run("acct-1")

        assert outcome.success is True
        actions = {c.key: c.resolution.action for c in outcome.migration.conflicts}
        assert actions == {"profile": ConflictAction.MERGE, "meal_logs": ConflictAction.MERGE}
        profile = codec.decode(
            "profile", await sqlalchemy_remote.get_account_record("acct-1", "profile")
        )
        meals = codec.decode(
            "meal_logs", await sqlalchemy_remote.get_account_record("acct-1", "meal_logs")
        )
        assert (profile.first_name, profile.last_name, profile.age) == ("Ada", "Lovelace", 36)
        assert [entry.id for entry in meals.entries] == ["m0", "m1"]

    @pytest.mark.asyncio
    async def test_history_survives_restart(self, make_engine, sqlite_kv_store, codec):
        await sqlite_kv_store.set(
            "guest:body_metrics", codec.encode(BodyMetricsRecord(weight_kg=82))
        )
        outcome = await make_engine().flow.run("acct-1")

        restarted = make_engine()
        restarted.resolver.associate_account("acct-1")
        state = await restarted.state_store.check_migration_status()

        assert state.last_migration_attempt.attempt_id == outcome.migration.attempt_id
        assert state.last_migration_attempt.success is True
        assert state.has_local_data is False
        assert await sqlite_kv_store.get("user:acct-1:_migration_pending") is None
