"""Tests for SyncStateTracker bookkeeping."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from conftest import USER_EMAIL
from mailbox_sync.storage.database import MailStore
from mailbox_sync.storage.sync_state import SyncStateTracker, is_newer_cursor


@pytest.fixture
def tracker(store: MailStore) -> SyncStateTracker:
    return SyncStateTracker(store)


class TestIsNewerCursor:
    """Tests for history cursor ordering."""

    @pytest.mark.parametrize(
        ("candidate", "current", "expected"),
        [
            ("200", None, True),
            ("200", "100", True),
            ("100", "200", False),
            ("200", "200", False),
            # Numeric, not lexicographic
            ("1000", "999", True),
            ("abc", "xyz", True),
            ("abc", "abc", False),
        ],
    )
    def test_ordering(self, candidate: str, current: str | None, expected: bool) -> None:
        assert is_newer_cursor(candidate, current) is expected


class TestSyncStateTracker:
    """Tests for SyncStateTracker upserts."""

    async def test_missing_state(self, tracker: SyncStateTracker, user_id: str) -> None:
        assert tracker.get(user_id, "google") is None

    async def test_mark_full_sync_creates_row(
        self, tracker: SyncStateTracker, user_id: str
    ) -> None:
        at = datetime(2024, 5, 1, tzinfo=UTC)
        await tracker.mark_full_sync(user_id, "google", USER_EMAIL, at=at)

        state = tracker.get(user_id, "google", USER_EMAIL)
        assert state.last_full_sync == at
        assert state.last_delta_sync is None
        assert state.history_id is None

    async def test_updates_keep_other_columns(
        self, tracker: SyncStateTracker, store: MailStore, user_id: str
    ) -> None:
        """Each mark touches its own column on the single (user, provider, email) row."""
        full = datetime(2024, 5, 1, tzinfo=UTC)
        delta = datetime(2024, 5, 2, tzinfo=UTC)
        await tracker.mark_full_sync(user_id, "google", USER_EMAIL, at=full)
        await tracker.mark_delta_sync(user_id, "google", USER_EMAIL, at=delta)
        await tracker.record_history_id(user_id, "google", USER_EMAIL, "500")

        state = tracker.get(user_id, "google")
        assert (state.last_full_sync, state.last_delta_sync, state.history_id) == (
            full, delta, "500",
        )
        rows = store.conn.execute("SELECT COUNT(*) FROM sync_states").fetchone()[0]
        assert rows == 1

    async def test_history_cursor_only_moves_forward(
        self, tracker: SyncStateTracker, user_id: str
    ) -> None:
        assert await tracker.record_history_id(user_id, "google", USER_EMAIL, "500") is True
        assert await tracker.record_history_id(user_id, "google", USER_EMAIL, "400") is False
        assert tracker.get(user_id, "google").history_id == "500"

        assert await tracker.record_history_id(user_id, "google", USER_EMAIL, "600") is True
        assert tracker.get(user_id, "google").history_id == "600"

    async def test_rows_keyed_by_mailbox(self, tracker: SyncStateTracker, user_id: str) -> None:
        await tracker.record_history_id(user_id, "google", "a@example.com", "1")
        await tracker.record_history_id(user_id, "google", "b@example.com", "2")

        assert tracker.get(user_id, "google", "a@example.com").history_id == "1"
        assert tracker.get(user_id, "google", "b@example.com").history_id == "2"

    async def test_concurrent_writers_keep_newest_cursor(
        self, tracker: SyncStateTracker, user_id: str
    ) -> None:
        """Overlapping notifications arriving out of order never rewind the cursor."""
        await tracker.record_history_id(user_id, "google", USER_EMAIL, "100")

        newer, older = await asyncio.gather(
            tracker.record_history_id(user_id, "google", USER_EMAIL, "300"),
            tracker.record_history_id(user_id, "google", USER_EMAIL, "200"),
        )

        assert (newer, older) == (True, False)
        assert tracker.get(user_id, "google").history_id == "300"
