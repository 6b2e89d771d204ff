"""Users and their connected upstream accounts (the credential store)."""

from __future__ import annotations

import logging
import sqlite3

from mailbox_sync.core.models import AccountCredentials
from mailbox_sync.storage.database import MailStore, new_id, utcnow

logger = logging.getLogger(__name__)


def _to_account(row: sqlite3.Row) -> AccountCredentials:
    return AccountCredentials(
        user_id=row["user_id"],
        provider=row["provider"],
        provider_account_id=row["provider_account_id"],
        email=row["email"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=row["expires_at"],
        scope=row["scope"],
    )


class AccountStore:
    """Lookup and persistence of users and per-provider OAuth tokens."""

    def __init__(self, store: MailStore) -> None:
        self._store = store

    def create_user(
        self,
        email: str | None = None,
        name: str | None = None,
        user_id: str | None = None,
    ) -> str:
        """Insert a user and return its id."""
        user_id = user_id or new_id()
        self._store.conn.execute(
            "INSERT INTO users (id, email, name, created_at) VALUES (?, ?, ?, ?)",
            (user_id, email, name, utcnow()),
        )
        return user_id

    def delete_user(self, user_id: str) -> None:
        """Delete a user; threads, messages and sync state cascade."""
        self._store.conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

    def link_account(self, account: AccountCredentials) -> None:
        """Insert or replace the tokens for (provider, provider account id)."""
        self._store.conn.execute(
            """INSERT INTO accounts
               (id, user_id, provider, provider_account_id, email,
                access_token, refresh_token, expires_at, scope)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(provider, provider_account_id) DO UPDATE SET
                   user_id = excluded.user_id,
                   email = excluded.email,
                   access_token = excluded.access_token,
                   refresh_token = COALESCE(excluded.refresh_token, accounts.refresh_token),
                   expires_at = excluded.expires_at,
                   scope = excluded.scope""",
            (
                new_id(), account.user_id, account.provider, account.provider_account_id,
                account.email, account.access_token, account.refresh_token,
                account.expires_at, account.scope,
            ),
        )
        logger.info(
            "Linked %s account %s to user %s",
            account.provider, account.email or account.provider_account_id, account.user_id,
        )

    def get_account(self, user_id: str, provider: str) -> AccountCredentials | None:
        row = self._store.conn.execute(
            "SELECT * FROM accounts WHERE user_id = ? AND provider = ? LIMIT 1",
            (user_id, provider),
        ).fetchone()
        return _to_account(row) if row else None

    def update_tokens(
        self,
        provider: str,
        provider_account_id: str,
        *,
        access_token: str | None,
        refresh_token: str | None,
        expires_at: int | None,
    ) -> None:
        """Persist refreshed tokens back onto the account row."""
        self._store.conn.execute(
            """UPDATE accounts SET access_token = ?, refresh_token = ?, expires_at = ?
               WHERE provider = ? AND provider_account_id = ?""",
            (access_token, refresh_token, expires_at, provider, provider_account_id),
        )

    def get_account_email(self, user_id: str, provider: str) -> str | None:
        """Mailbox address stored on the user's account, if any."""
        account = self.get_account(user_id, provider)
        return account.email if account else None

    def users_with_provider(self, provider: str) -> list[str]:
        """Ids of users with at least one account for ``provider``."""
        rows = self._store.conn.execute(
            """SELECT DISTINCT u.id FROM users u
               JOIN accounts a ON a.user_id = u.id
               WHERE a.provider = ?
               ORDER BY u.created_at""",
            (provider,),
        ).fetchall()
        return [row["id"] for row in rows]

    def find_user_by_account_email(self, provider: str, email: str) -> str | None:
        """User owning the ``provider`` account whose mailbox address is ``email``."""
        row = self._store.conn.execute(
            "SELECT user_id FROM accounts WHERE provider = ? AND email = ? LIMIT 1",
            (provider, email),
        ).fetchone()
        return row["user_id"] if row else None
