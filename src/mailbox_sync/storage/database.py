"""SQLite-backed relational store with bounded transactional units."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mailbox_sync.core.exceptions import TransactionTimeoutError

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT,
        name TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        provider TEXT NOT NULL,
        provider_account_id TEXT NOT NULL,
        email TEXT,
        access_token TEXT,
        refresh_token TEXT,
        expires_at INTEGER,
        scope TEXT,
        UNIQUE (provider, provider_account_id)
    );

    CREATE TABLE IF NOT EXISTS email_threads (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        gmail_thread_id TEXT NOT NULL,
        subject TEXT,
        last_message_at TEXT,
        snippet TEXT,
        is_read INTEGER NOT NULL DEFAULT 0,
        is_starred INTEGER NOT NULL DEFAULT 0,
        is_important INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (user_id, gmail_thread_id)
    );

    CREATE INDEX IF NOT EXISTS idx_threads_user_last ON email_threads(user_id, last_message_at);
    CREATE INDEX IF NOT EXISTS idx_threads_user_read
        ON email_threads(user_id, is_read, last_message_at);
    CREATE INDEX IF NOT EXISTS idx_threads_user_starred ON email_threads(user_id, is_starred);

    CREATE TABLE IF NOT EXISTS email_messages (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        thread_id TEXT NOT NULL REFERENCES email_threads(id) ON DELETE CASCADE,
        gmail_message_id TEXT NOT NULL,
        internal_date TEXT NOT NULL,
        sender TEXT,
        "to" TEXT,
        cc TEXT,
        bcc TEXT,
        subject TEXT,
        snippet TEXT,
        text_plain TEXT,
        html_blob_key TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (user_id, gmail_message_id)
    );

    CREATE INDEX IF NOT EXISTS idx_messages_thread_date ON email_messages(thread_id, internal_date);
    CREATE INDEX IF NOT EXISTS idx_messages_user_subject ON email_messages(user_id, subject);

    CREATE TABLE IF NOT EXISTS attachments (
        id TEXT PRIMARY KEY,
        message_id TEXT NOT NULL REFERENCES email_messages(id) ON DELETE CASCADE,
        filename TEXT,
        mime_type TEXT,
        size_bytes INTEGER,
        blob_key TEXT NOT NULL,
        inline_cid TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS sync_states (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        provider TEXT NOT NULL,
        email TEXT NOT NULL,
        history_id TEXT,
        last_full_sync TEXT,
        last_delta_sync TEXT,
        UNIQUE (user_id, provider, email)
    );

    CREATE INDEX IF NOT EXISTS idx_sync_states_email ON sync_states(email);
"""


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Transaction:
    """Statement handle for one transactional unit.

    Statements issued after the execution deadline raise
    TransactionTimeoutError; the owning context rolls everything back.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        deadline: float | None,
        clock: Callable[[], float],
    ) -> None:
        self._conn = conn
        self._deadline = deadline
        self._clock = clock
        self._savepoints = 0

    def check_deadline(self) -> None:
        if self._deadline is not None and self._clock() > self._deadline:
            raise TransactionTimeoutError("Transaction exceeded its execution timeout")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        self.check_deadline()
        return self._conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Nested unit: an exception rolls back only the statements inside it."""
        self._savepoints += 1
        name = f"sp_{self._savepoints}"
        self._conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            self._conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self._conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            self._conn.execute(f"RELEASE SAVEPOINT {name}")


class MailStore:
    """Owns the SQLite connection and schema for threads, messages and sync state.

    Tables:
    - users / accounts: owners and their upstream credentials
    - email_threads / email_messages / attachments: the mailbox mirror
    - sync_states: per (user, provider, mailbox) cursors and timestamps
    """

    def __init__(self, db_path: Path, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._clock = clock
        self._write_lock = asyncio.Lock()

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> MailStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(
        self,
        *,
        max_wait: float | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[Transaction]:
        """Open a write transaction committed as a unit.

        Args:
            max_wait: Seconds to wait for the write slot before giving up.
            timeout: Seconds the unit may run before it is rolled back.

        Raises:
            TransactionTimeoutError: If either ceiling is exceeded.
        """
        try:
            await asyncio.wait_for(self._write_lock.acquire(), timeout=max_wait)
        except TimeoutError as e:
            raise TransactionTimeoutError(
                f"Timed out after {max_wait}s waiting to start a transaction"
            ) from e

        try:
            conn = self.conn
            busy_ms = int((max_wait if max_wait is not None else 5.0) * 1000)
            conn.execute(f"PRAGMA busy_timeout = {busy_ms}")
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise TransactionTimeoutError(f"Could not acquire write lock: {e}") from e

            deadline = self._clock() + timeout if timeout is not None else None
            tx = Transaction(conn, deadline, self._clock)
            try:
                yield tx
                tx.check_deadline()
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
        finally:
            self._write_lock.release()
