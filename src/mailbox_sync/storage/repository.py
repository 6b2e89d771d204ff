"""Read accessors and user-scoped mutations over the synced mailbox."""

from __future__ import annotations

import logging
import math
import sqlite3

from mailbox_sync.core.models import MessageRecord, PaginatedMessages, ThreadRecord
from mailbox_sync.storage.blob_store import FileBlobStore
from mailbox_sync.storage.database import MailStore, from_iso, utcnow

logger = logging.getLogger(__name__)

_MESSAGE_SELECT = """
    SELECT m.*, t.is_read, t.is_starred, t.is_important
    FROM email_messages m
    JOIN email_threads t ON t.id = m.thread_id
"""


def _to_message(row: sqlite3.Row, html: str | None = None) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        user_id=row["user_id"],
        thread_id=row["thread_id"],
        gmail_message_id=row["gmail_message_id"],
        internal_date=from_iso(row["internal_date"]),
        sender=row["sender"],
        to=row["to"],
        cc=row["cc"],
        bcc=row["bcc"],
        subject=row["subject"],
        snippet=row["snippet"],
        text_plain=row["text_plain"],
        html_blob_key=row["html_blob_key"],
        is_read=bool(row["is_read"]),
        is_starred=bool(row["is_starred"]),
        is_important=bool(row["is_important"]),
        html=html,
    )


def _to_thread(row: sqlite3.Row) -> ThreadRecord:
    return ThreadRecord(
        id=row["id"],
        user_id=row["user_id"],
        gmail_thread_id=row["gmail_thread_id"],
        subject=row["subject"],
        last_message_at=from_iso(row["last_message_at"]),
        snippet=row["snippet"],
        is_read=bool(row["is_read"]),
        is_starred=bool(row["is_starred"]),
        is_important=bool(row["is_important"]),
    )


class MessageRepository:
    """Messages joined with their thread flags, newest first."""

    def __init__(self, store: MailStore, blob_store: FileBlobStore | None = None) -> None:
        self._store = store
        self._blob_store = blob_store

    def list_all_messages(self) -> list[MessageRecord]:
        rows = self._store.conn.execute(
            _MESSAGE_SELECT + " ORDER BY m.internal_date DESC"
        ).fetchall()
        return [_to_message(row) for row in rows]

    def list_user_messages(self, user_id: str) -> list[MessageRecord]:
        rows = self._store.conn.execute(
            _MESSAGE_SELECT + " WHERE m.user_id = ? ORDER BY m.internal_date DESC",
            (user_id,),
        ).fetchall()
        return [_to_message(row) for row in rows]

    def list_user_messages_paginated(
        self, user_id: str, page: int = 1, limit: int = 50
    ) -> PaginatedMessages:
        """One page (1-based) of a user's messages."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")

        total = self._store.conn.execute(
            "SELECT COUNT(*) AS cnt FROM email_messages WHERE user_id = ?", (user_id,)
        ).fetchone()["cnt"]
        rows = self._store.conn.execute(
            _MESSAGE_SELECT
            + " WHERE m.user_id = ? ORDER BY m.internal_date DESC LIMIT ? OFFSET ?",
            (user_id, limit, (page - 1) * limit),
        ).fetchall()

        return PaginatedMessages(
            messages=tuple(_to_message(row) for row in rows),
            total_count=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    def get_message(self, message_id: str) -> MessageRecord | None:
        row = self._store.conn.execute(
            _MESSAGE_SELECT + " WHERE m.id = ?", (message_id,)
        ).fetchone()
        return _to_message(row) if row else None

    def get_message_with_html(self, user_id: str, message_id: str) -> MessageRecord | None:
        """A user's message with its HTML body loaded from the blob store."""
        row = self._store.conn.execute(
            _MESSAGE_SELECT + " WHERE m.id = ? AND m.user_id = ?", (message_id, user_id)
        ).fetchone()
        if row is None:
            return None

        html = None
        if row["html_blob_key"] and self._blob_store is not None:
            html = self._blob_store.get(row["html_blob_key"])
        return _to_message(row, html=html)

    def get_thread(self, user_id: str, gmail_thread_id: str) -> ThreadRecord | None:
        row = self._store.conn.execute(
            "SELECT * FROM email_threads WHERE user_id = ? AND gmail_thread_id = ?",
            (user_id, gmail_thread_id),
        ).fetchone()
        return _to_thread(row) if row else None

    def count_by_user(self, user_id: str) -> dict[str, int]:
        """Thread, message and unread-thread counts for a user."""
        row = self._store.conn.execute(
            """SELECT
                   (SELECT COUNT(*) FROM email_threads WHERE user_id = :u) AS threads,
                   (SELECT COUNT(*) FROM email_messages WHERE user_id = :u) AS messages,
                   (SELECT COUNT(*) FROM email_threads WHERE user_id = :u AND is_read = 0)
                       AS unread_threads""",
            {"u": user_id},
        ).fetchone()
        return dict(row)

    def _owned_thread_id(self, user_id: str, message_id: str) -> str:
        row = self._store.conn.execute(
            "SELECT thread_id FROM email_messages WHERE id = ? AND user_id = ?",
            (message_id, user_id),
        ).fetchone()
        if row is None:
            raise LookupError(f"Message {message_id} not found for user {user_id}")
        return row["thread_id"]

    def mark_read(self, user_id: str, message_id: str) -> None:
        self._set_read(user_id, message_id, True)

    def mark_unread(self, user_id: str, message_id: str) -> None:
        self._set_read(user_id, message_id, False)

    def _set_read(self, user_id: str, message_id: str, is_read: bool) -> None:
        thread_id = self._owned_thread_id(user_id, message_id)
        self._store.conn.execute(
            "UPDATE email_threads SET is_read = ?, updated_at = ? WHERE id = ?",
            (is_read, utcnow(), thread_id),
        )

    def delete_message(self, user_id: str, message_id: str) -> None:
        """Delete a user's message; its thread goes too once it has no messages left."""
        thread_id = self._owned_thread_id(user_id, message_id)
        conn = self._store.conn
        conn.execute("DELETE FROM email_messages WHERE id = ?", (message_id,))
        remaining = conn.execute(
            "SELECT COUNT(*) AS cnt FROM email_messages WHERE thread_id = ?", (thread_id,)
        ).fetchone()["cnt"]
        if remaining == 0:
            conn.execute("DELETE FROM email_threads WHERE id = ?", (thread_id,))
        logger.info("Deleted message %s for user %s", message_id, user_id)
