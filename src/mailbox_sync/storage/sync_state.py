"""Per (user, provider, mailbox) sync cursor and timestamp bookkeeping."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime

from mailbox_sync.core.models import SyncStateRecord
from mailbox_sync.storage.database import MailStore, from_iso, new_id, to_iso

logger = logging.getLogger(__name__)


def _to_record(row: sqlite3.Row) -> SyncStateRecord:
    return SyncStateRecord(
        user_id=row["user_id"],
        provider=row["provider"],
        email=row["email"],
        history_id=row["history_id"],
        last_full_sync=from_iso(row["last_full_sync"]),
        last_delta_sync=from_iso(row["last_delta_sync"]),
    )


def is_newer_cursor(candidate: str, current: str | None) -> bool:
    """Whether ``candidate`` moves the history cursor forward.

    Gmail history ids are decimal integers; non-numeric cursors always replace.
    """
    if current is None:
        return True
    try:
        return int(candidate) > int(current)
    except ValueError:
        return candidate != current


class SyncStateTracker:
    """Upserts sync state rows keyed by (user, provider, email)."""

    def __init__(self, store: MailStore, *, max_wait: float = 10.0, timeout: float = 30.0) -> None:
        self._store = store
        self._max_wait = max_wait
        self._timeout = timeout

    def get(self, user_id: str, provider: str, email: str | None = None) -> SyncStateRecord | None:
        """Sync state for a mailbox; without ``email``, the first row for the provider."""
        if email is None:
            row = self._store.conn.execute(
                "SELECT * FROM sync_states WHERE user_id = ? AND provider = ? LIMIT 1",
                (user_id, provider),
            ).fetchone()
        else:
            row = self._store.conn.execute(
                "SELECT * FROM sync_states WHERE user_id = ? AND provider = ? AND email = ?",
                (user_id, provider, email),
            ).fetchone()
        return _to_record(row) if row else None

    async def _upsert(
        self,
        user_id: str,
        provider: str,
        email: str,
        column: str,
        value: str | None,
    ) -> None:
        async with self._store.transaction(max_wait=self._max_wait, timeout=self._timeout) as tx:
            tx.execute(
                f"""INSERT INTO sync_states (id, user_id, provider, email, {column})
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, provider, email) DO UPDATE SET
                        {column} = excluded.{column}""",
                (new_id(), user_id, provider, email, value),
            )

    async def mark_full_sync(
        self, user_id: str, provider: str, email: str, at: datetime | None = None
    ) -> None:
        stamp = to_iso(at or datetime.now(UTC))
        await self._upsert(user_id, provider, email, "last_full_sync", stamp)

    async def mark_delta_sync(
        self, user_id: str, provider: str, email: str, at: datetime | None = None
    ) -> None:
        stamp = to_iso(at or datetime.now(UTC))
        await self._upsert(user_id, provider, email, "last_delta_sync", stamp)

    async def record_history_id(
        self, user_id: str, provider: str, email: str, history_id: str
    ) -> bool:
        """Store ``history_id`` if it moves the cursor forward.

        The stored cursor is compared inside the write transaction, so
        overlapping writers cannot move it backwards.

        Returns True when the stored cursor changed.
        """
        async with self._store.transaction(max_wait=self._max_wait, timeout=self._timeout) as tx:
            row = tx.fetchone(
                """SELECT history_id FROM sync_states
                   WHERE user_id = ? AND provider = ? AND email = ?""",
                (user_id, provider, email),
            )
            stored = row["history_id"] if row else None
            if row is not None and not is_newer_cursor(history_id, stored):
                logger.debug(
                    "Ignoring history id %s for user %s (stored %s)",
                    history_id, user_id, stored,
                )
                return False
            cursor = tx.execute(
                """INSERT INTO sync_states (id, user_id, provider, email, history_id)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(user_id, provider, email) DO UPDATE SET
                       history_id = excluded.history_id""",
                (new_id(), user_id, provider, email, history_id),
            )
        return cursor.rowcount > 0
