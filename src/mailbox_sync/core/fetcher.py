"""Paginated id listing and batched full-message retrieval."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from mailbox_sync.core.backoff import Sleep, retry_with_backoff
from mailbox_sync.core.models import BatchFetchResult, MessagePage
from mailbox_sync.core.upstream import MESSAGE_ADDED, MailUpstream

logger = logging.getLogger(__name__)


class MessageFetcher:
    """Pulls message ids and full messages from one upstream mailbox.

    Every upstream call goes through ``retry_with_backoff``.
    """

    def __init__(
        self,
        upstream: MailUpstream,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 1.0,
        inter_batch_delay_seconds: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._upstream = upstream
        self._max_retries = max_retries
        self._base_delay = base_delay_seconds
        self._inter_batch_delay = inter_batch_delay_seconds
        self._sleep = sleep

    async def _retry(self, operation: Any, context: str) -> Any:
        return await retry_with_backoff(
            operation,
            max_retries=self._max_retries,
            base_delay=self._base_delay,
            context=context,
            sleep=self._sleep,
        )

    async def list_message_ids(
        self,
        page_size: int,
        page_token: str | None = None,
        label_ids: list[str] | None = None,
    ) -> MessagePage:
        """Fetch one page of message ids. An empty page with no token means exhaustion."""
        return await self._retry(
            lambda: self._upstream.list_message_ids(page_size, page_token, label_ids),
            "list messages",
        )

    async def fetch_messages_batch(
        self,
        message_ids: Sequence[str],
        batch_size: int = 10,
    ) -> BatchFetchResult:
        """Fetch full messages in concurrent batches of ``batch_size``.

        Each get is retried on its own; an id that still fails is reported in
        ``failed_ids`` instead of aborting the rest of the batch.
        """
        messages: list[dict[str, Any]] = []
        failed: list[str] = []

        for start in range(0, len(message_ids), batch_size):
            batch = list(message_ids[start:start + batch_size])
            results = await asyncio.gather(
                *(self._fetch_one(msg_id) for msg_id in batch),
                return_exceptions=True,
            )
            for msg_id, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.warning("Failed to fetch message %s: %s", msg_id, result)
                    failed.append(msg_id)
                else:
                    messages.append(result)

            if start + batch_size < len(message_ids) and self._inter_batch_delay > 0:
                await self._sleep(self._inter_batch_delay)

        logger.debug("Fetched %d messages (%d failed)", len(messages), len(failed))
        return BatchFetchResult(messages=tuple(messages), failed_ids=tuple(failed))

    async def _fetch_one(self, message_id: str) -> dict[str, Any]:
        return await self._retry(
            lambda: self._upstream.get_message(message_id),
            f"get message {message_id}",
        )

    async def get_label_total(self, label_id: str) -> int:
        """Total message count for a label."""
        label = await self._retry(lambda: self._upstream.get_label(label_id), f"get label {label_id}")
        return int(label.get("messagesTotal") or 0)

    async def list_history_message_ids(
        self,
        start_history_id: str,
        max_pages: int = 5,
    ) -> list[str]:
        """Message ids added since ``start_history_id``.

        Ids from the dedicated ``messagesAdded`` lists come first, followed by
        ids only present in the general ``messages`` lists; duplicates are dropped.
        """
        added: list[str] = []
        general: list[str] = []
        page_token: str | None = None
        pages = 0

        while True:
            token = page_token
            page = await self._retry(
                lambda: self._upstream.list_history(start_history_id, [MESSAGE_ADDED], token),
                "list history",
            )
            pages += 1
            added.extend(page.added_message_ids)
            general.extend(page.message_ids)
            page_token = page.next_page_token
            if not page_token or pages >= max_pages:
                break

        return list(dict.fromkeys([*added, *general]))
