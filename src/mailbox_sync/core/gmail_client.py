"""Gmail API adapter implementing the MailUpstream interface."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from mailbox_sync.core.exceptions import (
    ClientError,
    NetworkError,
    RateLimitedError,
    ServerError,
    UpstreamError,
)
from mailbox_sync.core.models import HistoryPage, MessagePage

logger = logging.getLogger(__name__)


def _retry_after(exc: HttpError) -> float | None:
    value = exc.resp.get("retry-after") if exc.resp is not None else None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def translate_http_error(exc: HttpError, context: str) -> UpstreamError:
    """Map a googleapiclient HttpError onto the tagged upstream error set."""
    status = int(exc.resp.status) if exc.resp is not None else 0
    message = f"Failed to {context}: {exc}"
    if status == 429:
        return RateLimitedError(message, retry_after=_retry_after(exc))
    if status >= 500:
        return ServerError(status, message)
    return ClientError(status, message)


class GmailUpstream:
    """Thin async wrapper around the Gmail API for one mailbox.

    The discovery client is synchronous; every request runs in a worker
    thread with its own authorized HTTP object because httplib2 connections
    are not thread-safe.
    """

    def __init__(
        self,
        service: Resource,
        credentials: Credentials | None = None,
        user_id: str = "me",
    ) -> None:
        self._service = service
        self._credentials = credentials
        self._user_id = user_id

    def _execute(self, request: Any) -> Any:
        if self._credentials is None:
            return request.execute()
        return request.execute(http=AuthorizedHttp(self._credentials, http=httplib2.Http()))

    async def _call(self, request: Any, context: str) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._execute, request)
        except HttpError as e:
            raise translate_http_error(e, context) from e
        except (OSError, httplib2.HttpLib2Error) as e:
            raise NetworkError(f"Failed to {context}: {e}") from e

    async def list_message_ids(
        self,
        page_size: int,
        page_token: str | None = None,
        label_ids: list[str] | None = None,
    ) -> MessagePage:
        kwargs: dict[str, Any] = {"userId": self._user_id, "maxResults": page_size}
        if page_token:
            kwargs["pageToken"] = page_token
        if label_ids:
            kwargs["labelIds"] = label_ids

        request = self._service.users().messages().list(**kwargs)
        response = await self._call(request, "list messages")

        ids = tuple(msg["id"] for msg in response.get("messages", []))
        logger.debug("Listed %d message IDs (page)", len(ids))
        return MessagePage(message_ids=ids, next_page_token=response.get("nextPageToken"))

    async def get_message(self, message_id: str) -> dict[str, Any]:
        request = self._service.users().messages().get(
            userId=self._user_id, id=message_id, format="full"
        )
        return await self._call(request, f"get message {message_id}")

    async def get_label(self, label_id: str) -> dict[str, Any]:
        request = self._service.users().labels().get(userId=self._user_id, id=label_id)
        return await self._call(request, f"get label {label_id}")

    async def list_history(
        self,
        start_history_id: str,
        history_types: list[str] | None = None,
        page_token: str | None = None,
    ) -> HistoryPage:
        kwargs: dict[str, Any] = {
            "userId": self._user_id,
            "startHistoryId": start_history_id,
        }
        if history_types:
            kwargs["historyTypes"] = history_types
        if page_token:
            kwargs["pageToken"] = page_token

        request = self._service.users().history().list(**kwargs)
        response = await self._call(request, "list history")

        added: list[str] = []
        general: list[str] = []
        for record in response.get("history", []):
            for entry in record.get("messagesAdded", []):
                added.append(entry["message"]["id"])
            for msg in record.get("messages", []):
                general.append(msg["id"])

        return HistoryPage(
            added_message_ids=tuple(added),
            message_ids=tuple(general),
            next_page_token=response.get("nextPageToken"),
            history_id=response.get("historyId"),
        )

    async def get_profile(self) -> dict[str, Any]:
        """Mailbox profile (``emailAddress``, ``historyId``, totals)."""
        request = self._service.users().getProfile(userId=self._user_id)
        return await self._call(request, "get profile")
