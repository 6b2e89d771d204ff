"""Tests for domain model helpers."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from mailbox_sync.core.models import MessageFlags, MessagePage, ParsedMessage


class TestMessageFlags:
    """Tests for MessageFlags.from_labels()."""

    def test_unread_and_important(self) -> None:
        flags = MessageFlags.from_labels(("UNREAD", "IMPORTANT"))
        assert flags.is_read is False
        assert flags.is_important is True
        assert flags.is_starred is False

    def test_starred_read(self) -> None:
        flags = MessageFlags.from_labels(("INBOX", "STARRED"))
        assert flags.is_read is True
        assert flags.is_starred is True

    @pytest.mark.parametrize("labels", [None, ()])
    def test_absent_or_empty_labels(self, labels: tuple[str, ...] | None) -> None:
        """No labels means read, unstarred, unimportant."""
        assert MessageFlags.from_labels(labels) == MessageFlags()
        assert MessageFlags.from_labels(labels).is_read is True

    def test_frozen(self) -> None:
        flags = MessageFlags()
        with pytest.raises(AttributeError):
            flags.is_starred = True  # type: ignore[misc]


class TestParsedMessage:
    def test_flags_follow_labels(self) -> None:
        msg = ParsedMessage(
            message_id="m", thread_id="t",
            internal_date=datetime(2024, 1, 1, tzinfo=UTC),
            label_ids=("STARRED",),
        )
        assert msg.flags.is_starred is True


class TestMessagePage:
    def test_exhausted(self) -> None:
        assert MessagePage().exhausted is True
        assert MessagePage(message_ids=("a",)).exhausted is False
        assert MessagePage(next_page_token="t").exhausted is False
