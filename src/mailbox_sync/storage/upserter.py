"""Transactional thread/message reconciliation against the local store."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mailbox_sync.core.exceptions import TransactionTimeoutError
from mailbox_sync.core.models import MessageFlags, ParsedMessage, UpsertResult
from mailbox_sync.storage.blob_store import FileBlobStore, html_key
from mailbox_sync.storage.database import MailStore, Transaction, from_iso, new_id, to_iso, utcnow

logger = logging.getLogger(__name__)


class MessageUpserter:
    """Persists parsed messages in fixed-size chunks, one transaction per chunk.

    Within a chunk each message runs in its own savepoint: a failing message
    is rolled back and counted while its siblings still commit. A chunk that
    exceeds its wait or execution ceiling is rolled back as a whole and the
    TransactionTimeoutError propagates to the caller.

    Thread flags are overwritten by every message processed, so after a chunk
    they reflect the last message in iteration order.

    HTML bodies of newly created messages are written to the blob store only
    after their chunk commits, so a rolled-back message leaves no blob behind.
    """

    def __init__(
        self,
        store: MailStore,
        blob_store: FileBlobStore | None = None,
        *,
        chunk_size: int = 10,
        max_wait: float = 10.0,
        timeout: float = 30.0,
        store_html: bool = True,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._store = store
        self._blob_store = blob_store
        self._chunk_size = chunk_size
        self._max_wait = max_wait
        self._timeout = timeout
        self._store_html = store_html

    async def persist(self, user_id: str, messages: Sequence[ParsedMessage]) -> UpsertResult:
        """Upsert ``messages`` for ``user_id``.

        Returns:
            UpsertResult with per-message synced and error counts.

        Raises:
            TransactionTimeoutError: If a chunk exceeds its ceilings.
        """
        synced = 0
        errors = 0

        for start in range(0, len(messages), self._chunk_size):
            chunk = messages[start:start + self._chunk_size]
            chunk_synced = 0
            chunk_errors = 0
            pending_html: list[ParsedMessage] = []

            async with self._store.transaction(
                max_wait=self._max_wait, timeout=self._timeout
            ) as tx:
                for message in chunk:
                    try:
                        with tx.savepoint():
                            created = self.upsert_message(tx, user_id, message)
                        chunk_synced += 1
                        if created and self._keeps_html(message):
                            pending_html.append(message)
                    except TransactionTimeoutError:
                        raise
                    except Exception as e:
                        logger.warning("Error syncing message %s: %s", message.message_id, e)
                        chunk_errors += 1

            self._write_html(user_id, pending_html)
            synced += chunk_synced
            errors += chunk_errors

        return UpsertResult(synced=synced, errors=errors)

    def upsert_message(self, tx: Transaction, user_id: str, message: ParsedMessage) -> bool:
        """Reconcile one message and its thread. Returns True if the message was created."""
        flags = message.flags
        thread_id = self._upsert_thread(tx, user_id, message, flags)

        existing = tx.fetchone(
            "SELECT id, thread_id FROM email_messages WHERE user_id = ? AND gmail_message_id = ?",
            (user_id, message.message_id),
        )
        now = utcnow()

        if existing is not None:
            # First sync's content is authoritative; only the snippet is refreshed
            tx.execute(
                "UPDATE email_messages SET snippet = ?, updated_at = ? WHERE id = ?",
                (message.snippet, now, existing["id"]),
            )
            if existing["thread_id"] != thread_id:
                self._set_flags(tx, existing["thread_id"], flags, now)
            return False

        blob_key = html_key(user_id, message.message_id) if self._keeps_html(message) else None

        tx.execute(
            """INSERT INTO email_messages
               (id, user_id, thread_id, gmail_message_id, internal_date,
                sender, "to", cc, bcc, subject, snippet, text_plain, html_blob_key,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                new_id(), user_id, thread_id, message.message_id,
                to_iso(message.internal_date),
                message.headers.sender, message.headers.to, message.headers.cc,
                message.headers.bcc, message.headers.subject, message.snippet,
                message.body.text, blob_key, now, now,
            ),
        )
        return True

    def _keeps_html(self, message: ParsedMessage) -> bool:
        return bool(message.body.html) and self._blob_store is not None and self._store_html

    def _write_html(self, user_id: str, messages: Sequence[ParsedMessage]) -> None:
        for message in messages:
            key = html_key(user_id, message.message_id)
            try:
                self._blob_store.put(key, message.body.html)
            except (OSError, ValueError) as e:
                logger.warning("Could not store HTML body %s: %s", key, e)

    def _upsert_thread(
        self,
        tx: Transaction,
        user_id: str,
        message: ParsedMessage,
        flags: MessageFlags,
    ) -> str:
        row = tx.fetchone(
            "SELECT id, last_message_at FROM email_threads "
            "WHERE user_id = ? AND gmail_thread_id = ?",
            (user_id, message.thread_id),
        )
        now = utcnow()

        if row is None:
            thread_id = new_id()
            tx.execute(
                """INSERT INTO email_threads
                   (id, user_id, gmail_thread_id, subject, last_message_at, snippet,
                    is_read, is_starred, is_important, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    thread_id, user_id, message.thread_id, message.headers.subject,
                    to_iso(message.internal_date), message.snippet,
                    flags.is_read, flags.is_starred, flags.is_important, now, now,
                ),
            )
            return thread_id

        thread_id = row["id"]
        self._set_flags(tx, thread_id, flags, now)

        last_message_at = from_iso(row["last_message_at"])
        if last_message_at is None or message.internal_date >= last_message_at:
            tx.execute(
                "UPDATE email_threads SET last_message_at = ?, snippet = ? WHERE id = ?",
                (to_iso(message.internal_date), message.snippet, thread_id),
            )
        return thread_id

    @staticmethod
    def _set_flags(tx: Transaction, thread_id: str, flags: MessageFlags, now: str) -> None:
        tx.execute(
            """UPDATE email_threads
               SET is_read = ?, is_starred = ?, is_important = ?, updated_at = ?
               WHERE id = ?""",
            (flags.is_read, flags.is_starred, flags.is_important, now, thread_id),
        )
