"""Frozen dataclasses for the mailbox sync domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

UNREAD_LABEL = "UNREAD"
STARRED_LABEL = "STARRED"
IMPORTANT_LABEL = "IMPORTANT"


@dataclass(frozen=True)
class MessageHeaders:
    """Normalized headers. Absent headers are empty strings."""

    sender: str = ""
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    date: str = ""


@dataclass(frozen=True)
class MessageBody:
    """Extracted body content. Either side may be empty."""

    html: str = ""
    text: str = ""


@dataclass(frozen=True)
class MessageFlags:
    """Thread flags derived from one message's upstream labels."""

    is_unread: bool = False
    is_starred: bool = False
    is_important: bool = False

    @classmethod
    def from_labels(cls, label_ids: tuple[str, ...] | None) -> MessageFlags:
        if not label_ids:
            return cls()
        return cls(
            is_unread=UNREAD_LABEL in label_ids,
            is_starred=STARRED_LABEL in label_ids,
            is_important=IMPORTANT_LABEL in label_ids,
        )

    @property
    def is_read(self) -> bool:
        return not self.is_unread


@dataclass(frozen=True)
class ParsedMessage:
    """One upstream message after header and body extraction."""

    message_id: str
    thread_id: str
    internal_date: datetime
    headers: MessageHeaders = field(default_factory=MessageHeaders)
    body: MessageBody = field(default_factory=MessageBody)
    label_ids: tuple[str, ...] | None = None
    snippet: str = ""

    @property
    def flags(self) -> MessageFlags:
        return MessageFlags.from_labels(self.label_ids)


@dataclass(frozen=True)
class MessagePage:
    """One page of upstream message ids."""

    message_ids: tuple[str, ...] = ()
    next_page_token: str | None = None

    @property
    def exhausted(self) -> bool:
        return not self.message_ids and not self.next_page_token


@dataclass(frozen=True)
class HistoryPage:
    """One page of upstream history records, reduced to message ids."""

    added_message_ids: tuple[str, ...] = ()
    message_ids: tuple[str, ...] = ()
    next_page_token: str | None = None
    history_id: str | None = None


@dataclass(frozen=True)
class BatchFetchResult:
    """Full messages retrieved for a list of ids, plus the ids that failed."""

    messages: tuple[dict[str, Any], ...] = ()
    failed_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class AccountCredentials:
    """Stored OAuth tokens for one connected upstream account."""

    user_id: str
    provider: str
    provider_account_id: str
    email: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None
    scope: str | None = None


@dataclass(frozen=True)
class ThreadRecord:
    """A stored conversation."""

    id: str
    user_id: str
    gmail_thread_id: str
    subject: str | None
    last_message_at: datetime | None
    snippet: str | None
    is_read: bool
    is_starred: bool
    is_important: bool


@dataclass(frozen=True)
class MessageRecord:
    """A stored message joined with its thread's flags."""

    id: str
    user_id: str
    thread_id: str
    gmail_message_id: str
    internal_date: datetime
    sender: str | None = None
    to: str | None = None
    cc: str | None = None
    bcc: str | None = None
    subject: str | None = None
    snippet: str | None = None
    text_plain: str | None = None
    html_blob_key: str | None = None
    is_read: bool = False
    is_starred: bool = False
    is_important: bool = False
    html: str | None = None


@dataclass(frozen=True)
class SyncStateRecord:
    """Sync bookkeeping for one (user, provider, mailbox address)."""

    user_id: str
    provider: str
    email: str
    history_id: str | None = None
    last_full_sync: datetime | None = None
    last_delta_sync: datetime | None = None


@dataclass(frozen=True)
class PaginatedMessages:
    """One page of stored messages for a user."""

    messages: tuple[MessageRecord, ...]
    total_count: int
    page: int
    limit: int
    total_pages: int


@dataclass(frozen=True)
class UpsertResult:
    synced: int = 0
    errors: int = 0


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a full, delta or history sync for one user."""

    synced: int = 0
    errors: int = 0
    total_pages: int = 0


@dataclass(frozen=True)
class PaginatedSyncResult:
    """Outcome of the synchronous first page of a paginated sync."""

    synced: int
    errors: int
    total_inbox: int
    page_size: int
    background_task_started: bool
    job: Any = None


@dataclass(frozen=True)
class AllUsersSyncResult:
    total_users: int = 0
    total_synced: int = 0
    total_errors: int = 0
    total_pages: int = 0


@dataclass(frozen=True)
class PushNotification:
    """Decoded upstream push payload."""

    email_address: str
    history_id: str
