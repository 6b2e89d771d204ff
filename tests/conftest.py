"""Shared fixtures for mailbox sync tests."""

from __future__ import annotations

import base64
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.exceptions import ClientError
from mailbox_sync.core.models import AccountCredentials, HistoryPage, MessagePage
from mailbox_sync.pipeline.synchronizer import MailboxSynchronizer
from mailbox_sync.storage.accounts import AccountStore
from mailbox_sync.storage.blob_store import FileBlobStore
from mailbox_sync.storage.database import MailStore

USER_EMAIL = "owner@example.com"


def encode(text: str) -> str:
    """base64url-encode text the way Gmail ships body data (unpadded)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_raw_message(
    message_id: str,
    thread_id: str = "thread_1",
    *,
    labels: list[str] | None = None,
    subject: str = "Hello",
    sender: str = "sender@example.com",
    internal_date: int = 1_700_000_000_000,
    text: str | None = "Plain body",
    html: str | None = None,
    snippet: str | None = None,
) -> dict[str, Any]:
    """Raw Gmail API message (format=full) with a multipart/alternative payload."""
    parts = []
    if text is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": encode(text)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": encode(html)}})

    message: dict[str, Any] = {
        "id": message_id,
        "threadId": thread_id,
        "internalDate": str(internal_date),
        "snippet": snippet if snippet is not None else f"snippet {message_id}",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "To", "value": USER_EMAIL},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": "Tue, 14 Nov 2023 22:13:20 +0000"},
            ],
            "parts": parts,
        },
    }
    if labels is not None:
        message["labelIds"] = labels
    return message


class FakeMailUpstream:
    """Deterministic in-memory MailUpstream.

    ``pages`` are consumed with tokens ``page-<n>``; ``history`` pages with
    ``history-<n>``. ``failures`` maps an operation key ("list", "label",
    "history") or a message id to exceptions raised one per call.
    """

    def __init__(
        self,
        pages: list[list[str]] | None = None,
        messages: dict[str, dict[str, Any]] | None = None,
        history: list[HistoryPage] | None = None,
        inbox_total: int = 0,
    ) -> None:
        self.pages = pages or []
        self.messages = messages or {}
        self.history = history or []
        self.labels = {"INBOX": {"id": "INBOX", "name": "INBOX", "messagesTotal": inbox_total}}
        self.failures: dict[str, list[Exception]] = {}
        self.list_calls: list[tuple[int, str | None]] = []
        self.get_calls: list[str] = []
        self.history_calls: list[tuple[str, list[str] | None, str | None]] = []

    def fail(self, key: str, *errors: Exception) -> None:
        self.failures.setdefault(key, []).extend(errors)

    def _maybe_fail(self, key: str) -> None:
        queue = self.failures.get(key)
        if queue:
            raise queue.pop(0)

    async def list_message_ids(
        self,
        page_size: int,
        page_token: str | None = None,
        label_ids: list[str] | None = None,
    ) -> MessagePage:
        self.list_calls.append((page_size, page_token))
        self._maybe_fail("list")
        index = int(page_token.split("-")[1]) if page_token else 0
        if index >= len(self.pages):
            return MessagePage()
        next_token = f"page-{index + 1}" if index + 1 < len(self.pages) else None
        return MessagePage(message_ids=tuple(self.pages[index][:page_size]),
                           next_page_token=next_token)

    async def get_message(self, message_id: str) -> dict[str, Any]:
        self.get_calls.append(message_id)
        self._maybe_fail(message_id)
        if message_id not in self.messages:
            raise ClientError(404, f"message {message_id} not found")
        return self.messages[message_id]

    async def get_label(self, label_id: str) -> dict[str, Any]:
        self._maybe_fail("label")
        if label_id not in self.labels:
            raise ClientError(404, f"label {label_id} not found")
        return self.labels[label_id]

    async def list_history(
        self,
        start_history_id: str,
        history_types: list[str] | None = None,
        page_token: str | None = None,
    ) -> HistoryPage:
        self.history_calls.append((start_history_id, history_types, page_token))
        self._maybe_fail("history")
        index = int(page_token.split("-")[1]) if page_token else 0
        if index >= len(self.history):
            return HistoryPage()
        page = self.history[index]
        next_token = f"history-{index + 1}" if index + 1 < len(self.history) else None
        return HistoryPage(
            added_message_ids=page.added_message_ids,
            message_ids=page.message_ids,
            next_page_token=next_token,
            history_id=page.history_id,
        )


def mailbox(message_ids: list[str], **kwargs: Any) -> dict[str, dict[str, Any]]:
    """Raw messages keyed by id, all sharing ``kwargs``."""
    return {msg_id: make_raw_message(msg_id, **kwargs) for msg_id in message_ids}


@pytest.fixture
def settings(tmp_path: Path) -> MailboxSyncSettings:
    """Settings pointing at temporary paths, with no real delays."""
    return MailboxSyncSettings(
        database_path=tmp_path / "data" / "test.db",
        blob_dir=tmp_path / "blobs",
        client_secret_path=tmp_path / "creds" / "client_secret.json",
        inter_batch_delay_seconds=0.0,
        base_delay_seconds=0.0,
    )


@pytest.fixture
def store(settings: MailboxSyncSettings) -> Iterator[MailStore]:
    with MailStore(settings.database_path) as mail_store:
        yield mail_store


@pytest.fixture
def accounts(store: MailStore) -> AccountStore:
    return AccountStore(store)


@pytest.fixture
def blob_store(settings: MailboxSyncSettings) -> FileBlobStore:
    return FileBlobStore(settings.blob_dir)


@pytest.fixture
def user_id(accounts: AccountStore) -> str:
    """A user with a connected Google account for USER_EMAIL."""
    uid = accounts.create_user(email=USER_EMAIL, user_id="user_1")
    accounts.link_account(
        AccountCredentials(
            user_id=uid,
            provider="google",
            provider_account_id="google-sub-1",
            email=USER_EMAIL,
            access_token="access",
            refresh_token="refresh",
        )
    )
    return uid


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_synchronizer(
    settings: MailboxSyncSettings,
    store: MailStore,
    accounts: AccountStore,
    blob_store: FileBlobStore,
    fake_sleep: AsyncMock,
) -> Callable[..., MailboxSynchronizer]:
    """Build a MailboxSynchronizer whose factory hands out the given upstream."""

    def _make(upstream: Any, **overrides: Any) -> MailboxSynchronizer:
        async def factory(uid: str) -> Any:
            return upstream

        effective = settings.model_copy(update=overrides) if overrides else settings
        return MailboxSynchronizer(
            effective, store, accounts, factory, blob_store=blob_store, sleep=fake_sleep
        )

    return _make
