"""Tests for CLI argument parsing and command dispatch."""

from __future__ import annotations

import argparse
import json
from typing import Any
from unittest.mock import patch

import pytest

import scripts.cli as cli_module
from conftest import USER_EMAIL, FakeMailUpstream, mailbox
from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.models import SyncResult
from mailbox_sync.storage.database import MailStore


def _parse_args(argv: list[str]) -> argparse.Namespace:
    return cli_module.build_parser().parse_args(argv)


def _fake_factory(upstream: FakeMailUpstream) -> Any:
    async def factory(user_id: str) -> FakeMailUpstream:
        return upstream

    return lambda accounts, settings: factory


class TestArgumentParsing:
    """Subcommands and their flags."""

    def test_sync_defaults(self) -> None:
        args = _parse_args(["sync", "user_1"])
        assert args.command == "sync"
        assert args.user == "user_1"
        assert args.max_pages is None
        assert args.page_size is None

    def test_sync_flags(self) -> None:
        args = _parse_args(["sync", "user_1", "--max-pages", "3", "--page-size", "25"])
        assert (args.max_pages, args.page_size) == (3, 25)

    def test_delta_max_messages(self) -> None:
        assert _parse_args(["delta", "u", "--max-messages", "10"]).max_messages == 10

    def test_history_requires_cursor(self) -> None:
        args = _parse_args(["history", "u", "12345"])
        assert args.history_id == "12345"
        with pytest.raises(SystemExit):
            _parse_args(["history", "u"])

    def test_paginated_background_toggle(self) -> None:
        assert _parse_args(["paginated", "u"]).background is True
        assert _parse_args(["paginated", "u", "--no-background"]).background is False

    def test_list_defaults(self) -> None:
        args = _parse_args(["list", "u"])
        assert (args.page, args.limit) == (1, 50)

    @pytest.mark.parametrize("value", ["0", "-3"])
    def test_rejects_non_positive(self, value: str) -> None:
        with pytest.raises(SystemExit):
            _parse_args(["sync", "u", "--max-pages", value])

    def test_rejects_non_integer(self) -> None:
        with pytest.raises(SystemExit):
            _parse_args(["list", "u", "--limit", "abc"])

    def test_push_arguments(self) -> None:
        args = _parse_args(["push", USER_EMAIL, "999"])
        assert (args.email_address, args.history_id) == (USER_EMAIL, "999")


class TestRunCommand:
    """Dispatch against a real store and a fake upstream."""

    async def test_sync(
        self, settings: MailboxSyncSettings, store: MailStore, user_id: str
    ) -> None:
        upstream = FakeMailUpstream(pages=[["m1", "m2"]], messages=mailbox(["m1", "m2"]))

        with patch.object(cli_module, "GmailUpstreamFactory", _fake_factory(upstream)):
            result = await cli_module.run_command(
                _parse_args(["sync", user_id]), settings, store
            )

        assert result == SyncResult(synced=2, errors=0, total_pages=1)

    async def test_paginated_waits_for_background(
        self, settings: MailboxSyncSettings, store: MailStore, user_id: str
    ) -> None:
        upstream = FakeMailUpstream(pages=[["m1"], ["m2"]], messages=mailbox(["m1", "m2"]))

        with patch.object(cli_module, "GmailUpstreamFactory", _fake_factory(upstream)):
            result = await cli_module.run_command(
                _parse_args(["paginated", user_id, "--page-size", "1"]), settings, store
            )

        assert result.background_task_started is True
        assert result.job.done
        assert result.job.synced == 1

    async def test_push_unknown_mailbox(
        self, settings: MailboxSyncSettings, store: MailStore
    ) -> None:
        result = await cli_module.run_command(
            _parse_args(["push", "ghost@example.com", "1"]), settings, store
        )
        assert result.status_code == 404

    async def test_list_and_status(
        self, settings: MailboxSyncSettings, store: MailStore, user_id: str
    ) -> None:
        upstream = FakeMailUpstream(pages=[["m1"]], messages=mailbox(["m1"]))
        with patch.object(cli_module, "GmailUpstreamFactory", _fake_factory(upstream)):
            await cli_module.run_command(_parse_args(["sync", user_id]), settings, store)

        listing = await cli_module.run_command(_parse_args(["list", user_id]), settings, store)
        status = await cli_module.run_command(_parse_args(["status", user_id]), settings, store)

        assert listing.total_count == 1
        assert listing.messages[0].gmail_message_id == "m1"
        assert status["counts"]["messages"] == 1
        assert status["sync_state"].email == USER_EMAIL


class TestPrintResult:
    def test_dataclass_as_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        cli_module._print_result(SyncResult(synced=3, errors=1, total_pages=2))
        assert json.loads(capsys.readouterr().out) == {
            "synced": 3, "errors": 1, "total_pages": 2,
        }

    def test_dict_with_nested_dataclass(self, capsys: pytest.CaptureFixture[str]) -> None:
        cli_module._print_result({"result": SyncResult(), "user": "u"})
        assert json.loads(capsys.readouterr().out) == {
            "result": {"synced": 0, "errors": 0, "total_pages": 0},
            "user": "u",
        }


class TestMain:
    def test_no_command_prints_help(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli_module.main([])
        assert exc_info.value.code == 1
