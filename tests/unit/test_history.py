"""
Unit tests for InMemoryMigrationHistoryRepository.

Tests for:
- Protocol conformance
- Append-only ordering (newest first)
- Filtering by account
- Duplicate attempt rejection
"""

from __future__ import annotations

import pytest

from guestmigrate.exceptions import MigrationStateError
from guestmigrate.migration import MigrationAttemptDraft, MigrationHistoryRepository
from guestmigrate.migration.repositories import InMemoryMigrationHistoryRepository
from guestmigrate.observability import MockTracer


class TestInMemoryMigrationHistoryRepository:
    """Tests for the in-memory attempt history."""

    def test_implements_protocol(self, history):
        assert isinstance(history, MigrationHistoryRepository)

    @pytest.mark.asyncio
    async def test_empty(self, history):
        assert await history.list_attempts() == []
        assert await history.get_latest() is None

    @pytest.mark.asyncio
    async def test_newest_first(self, history):
        first = MigrationAttemptDraft("acct-1").seal()
        second = MigrationAttemptDraft("acct-1").seal()
        await history.append(first)
        await history.append(second)

        assert await history.list_attempts("acct-1") == [second, first]
        assert await history.get_latest("acct-1") == second

    @pytest.mark.asyncio
    async def test_filtered_by_account(self, history):
        mine = MigrationAttemptDraft("acct-1").seal()
        theirs = MigrationAttemptDraft("acct-2").seal()
        await history.append(mine)
        await history.append(theirs)

        assert await history.list_attempts("acct-1") == [mine]
        assert await history.get_latest("acct-3") is None
        assert len(await history.list_attempts()) == 2

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, history):
        attempt = MigrationAttemptDraft("acct-1").seal()
        await history.append(attempt)

        with pytest.raises(MigrationStateError):
            await history.append(attempt)

        assert await history.list_attempts() == [attempt]

    @pytest.mark.asyncio
    async def test_append_is_traced(self):
        tracer = MockTracer()
        history = InMemoryMigrationHistoryRepository(tracer=tracer)

        await history.append(MigrationAttemptDraft("acct-1").seal())

        assert tracer.span_names == ["guestmigrate.history.append"]
