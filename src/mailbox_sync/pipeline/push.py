"""Upstream push notification entry point (Pub/Sub envelope → history or delta sync)."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mailbox_sync.core.exceptions import ClientError, InvalidPushPayloadError
from mailbox_sync.core.models import PushNotification, SyncResult
from mailbox_sync.pipeline.synchronizer import MailboxSynchronizer
from mailbox_sync.storage.accounts import AccountStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushResponse:
    """HTTP-style acknowledgement for the push sender."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def decode_push_envelope(envelope: Any) -> PushNotification:
    """Decode a Pub/Sub push envelope into the mailbox address and history id.

    Raises:
        InvalidPushPayloadError: If the envelope has no data or the payload lacks
            the mailbox address or history id.
        ValueError: If the data is not base64-encoded UTF-8 JSON.
    """
    if not isinstance(envelope, dict):
        raise InvalidPushPayloadError("Invalid message format")
    message = envelope.get("message")
    data = message.get("data") if isinstance(message, dict) else None
    if not data:
        raise InvalidPushPayloadError("Invalid message format")

    payload = json.loads(base64.b64decode(data).decode("utf-8"))
    if not isinstance(payload, dict):
        raise InvalidPushPayloadError("Invalid Gmail payload")
    email_address = payload.get("emailAddress")
    history_id = payload.get("historyId")
    if not email_address or not history_id:
        raise InvalidPushPayloadError("Invalid Gmail payload")

    return PushNotification(email_address=str(email_address), history_id=str(history_id))


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class PushNotificationHandler:
    """Turns push notifications into history-based (or fallback delta) syncs.

    Only a missing payload or missing fields get a 400. Any other failure,
    including undecodable data, is acknowledged with a 200 so the sender does
    not redeliver it; the detail only goes to the log.
    """

    def __init__(
        self,
        synchronizer: MailboxSynchronizer,
        accounts: AccountStore,
        *,
        provider: str = "google",
        delta_max_messages: int = 50,
    ) -> None:
        self._synchronizer = synchronizer
        self._accounts = accounts
        self._provider = provider
        self._delta_max_messages = delta_max_messages

    async def handle(self, envelope: Any) -> PushResponse:
        logger.info("Push notification received at %s", _timestamp())

        user_id: str | None = None
        try:
            try:
                notification = decode_push_envelope(envelope)
            except InvalidPushPayloadError as e:
                logger.error("Invalid push notification: %s", e)
                return PushResponse(400, {"error": str(e)})

            user_id = self._accounts.find_user_by_account_email(
                self._provider, notification.email_address
            )
            if user_id is None:
                logger.info("No user found for mailbox %s", notification.email_address)
                return PushResponse(404, {"error": "No user found with Gmail account"})

            method, result = await self._sync(user_id, notification)
        except Exception as e:
            logger.exception("Push notification processing failed for user %s", user_id)
            return PushResponse(200, {
                "success": False,
                "user_id": user_id,
                "error": str(e),
                "timestamp": _timestamp(),
            })

        logger.info("Push sync completed for user %s via %s: %s", user_id, method, result)
        return PushResponse(200, {
            "success": True,
            "user_id": user_id,
            "email_address": notification.email_address,
            "history_id": notification.history_id,
            "synced": result.synced,
            "errors": result.errors,
            "method": method,
            "timestamp": _timestamp(),
        })

    async def _sync(self, user_id: str, notification: PushNotification) -> tuple[str, SyncResult]:
        tracker = self._synchronizer.sync_state
        state = tracker.get(user_id, self._provider)

        if state is None or not state.history_id:
            logger.info("No stored history id for user %s, falling back to delta sync", user_id)
            method = "delta"
            result = await self._synchronizer.sync_delta(user_id, self._delta_max_messages)
        else:
            try:
                method = "history"
                result = await self._synchronizer.sync_by_history(user_id, state.history_id)
            except ClientError as e:
                # Gmail answers 404 once a history id falls out of its retention window
                if e.status != 404:
                    raise
                logger.warning(
                    "History id %s expired for user %s, falling back to delta sync",
                    state.history_id, user_id,
                )
                method = "delta"
                result = await self._synchronizer.sync_delta(user_id, self._delta_max_messages)

        await tracker.record_history_id(
            user_id,
            self._provider,
            self._synchronizer.mailbox_address(user_id),
            notification.history_id,
        )
        return method, result
