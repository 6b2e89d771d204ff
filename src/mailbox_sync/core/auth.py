"""OAuth 2.0 credentials for the Gmail API, backed by the account store."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from mailbox_sync.core.exceptions import AuthenticationError
from mailbox_sync.core.gmail_client import GmailUpstream
from mailbox_sync.core.models import AccountCredentials

if TYPE_CHECKING:
    from mailbox_sync.config.settings import MailboxSyncSettings
    from mailbox_sync.storage.accounts import AccountStore

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


def run_connect_flow(client_secret_path: Path) -> Credentials:
    """Run the installed-app OAuth flow and return fresh credentials.

    Raises:
        AuthenticationError: If the client secret is missing or the flow fails.
    """
    if not client_secret_path.exists():
        raise AuthenticationError(
            f"Client secret file not found: {client_secret_path}. "
            "Download it from Google Cloud Console."
        )
    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(client_secret_path), SCOPES)
        return flow.run_local_server(port=0)
    except Exception as e:
        raise AuthenticationError(f"OAuth flow failed: {e}") from e


def credentials_from_account(
    account: AccountCredentials | None,
    client_id: str,
    client_secret: str,
) -> Credentials:
    """Build Google credentials from a stored account row.

    Raises:
        AuthenticationError: If the account has no access token.
    """
    if account is None or not account.access_token:
        user = account.user_id if account else "unknown"
        raise AuthenticationError(
            f"No Google access token found for user {user}. Please re-authenticate."
        )

    expiry = None
    if account.expires_at:
        # google-auth compares against naive UTC
        expiry = datetime.fromtimestamp(account.expires_at, UTC).replace(tzinfo=None)

    return Credentials(
        token=account.access_token,
        refresh_token=account.refresh_token,
        token_uri=TOKEN_URI,
        client_id=client_id or None,
        client_secret=client_secret or None,
        scopes=account.scope.split() if account.scope else SCOPES,
        expiry=expiry,
    )


def build_gmail_service(creds: Credentials) -> Resource:
    """Build a Gmail API service resource."""
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


class GmailUpstreamFactory:
    """Builds an authenticated GmailUpstream for a user.

    Expired access tokens are refreshed before the client is built and the
    refreshed tokens are written back to the account store.
    """

    def __init__(self, accounts: AccountStore, settings: MailboxSyncSettings) -> None:
        self._accounts = accounts
        self._settings = settings

    async def __call__(self, user_id: str) -> GmailUpstream:
        account = self._accounts.get_account(user_id, self._settings.provider)
        if account is None:
            raise AuthenticationError(f"No Google account connected for user {user_id}")

        creds = credentials_from_account(
            account,
            self._settings.google_client_id,
            self._settings.google_client_secret,
        )

        if creds.expired:
            if not creds.refresh_token:
                raise AuthenticationError(
                    f"Access token expired and no refresh token stored for user {user_id}"
                )
            try:
                await asyncio.to_thread(creds.refresh, Request())
            except RefreshError as e:
                raise AuthenticationError(f"Token refresh failed for user {user_id}: {e}") from e
            self._save_tokens(account, creds)

        service = build_gmail_service(creds)
        return GmailUpstream(service, creds)

    def _save_tokens(self, account: AccountCredentials, creds: Credentials) -> None:
        expires_at = None
        if creds.expiry is not None:
            expires_at = int(creds.expiry.replace(tzinfo=UTC).timestamp())
        self._accounts.update_tokens(
            account.provider,
            account.provider_account_id,
            access_token=creds.token or account.access_token,
            refresh_token=creds.refresh_token or account.refresh_token,
            expires_at=expires_at or account.expires_at,
        )
        logger.info("Refreshed access token for user %s", account.user_id)
