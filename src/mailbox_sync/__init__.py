"""Mailbox Sync - Mirror upstream Gmail mailboxes into a local relational store."""

from mailbox_sync.core.models import (
    AllUsersSyncResult,
    MessageBody,
    MessageHeaders,
    MessageRecord,
    PaginatedMessages,
    PaginatedSyncResult,
    ParsedMessage,
    SyncResult,
    ThreadRecord,
)
from mailbox_sync.pipeline.push import PushNotificationHandler
from mailbox_sync.pipeline.synchronizer import MailboxSynchronizer

__all__ = [
    "AllUsersSyncResult",
    "MailboxSynchronizer",
    "MessageBody",
    "MessageHeaders",
    "MessageRecord",
    "PaginatedMessages",
    "PaginatedSyncResult",
    "ParsedMessage",
    "PushNotificationHandler",
    "SyncResult",
    "ThreadRecord",
]
