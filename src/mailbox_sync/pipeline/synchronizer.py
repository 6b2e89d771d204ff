"""Sync orchestrator: full, delta, history and paginated mailbox sync."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.backoff import Sleep
from mailbox_sync.core.exceptions import ParseError, UpstreamError
from mailbox_sync.core.fetcher import MessageFetcher
from mailbox_sync.core.models import (
    AllUsersSyncResult,
    PaginatedSyncResult,
    ParsedMessage,
    SyncResult,
)
from mailbox_sync.core.parser import GmailParser
from mailbox_sync.core.upstream import MailUpstream
from mailbox_sync.pipeline.jobs import COMPLETED, FAILED, RUNNING, BackgroundJob, JobRegistry
from mailbox_sync.storage.accounts import AccountStore
from mailbox_sync.storage.blob_store import FileBlobStore
from mailbox_sync.storage.database import MailStore
from mailbox_sync.storage.sync_state import SyncStateTracker
from mailbox_sync.storage.upserter import MessageUpserter

logger = logging.getLogger(__name__)

UpstreamFactory = Callable[[str], Awaitable[MailUpstream]]

# Sync state key used when the account row has no mailbox address
PLACEHOLDER_EMAIL = "unknown@mailbox.invalid"


def _limit(value: int | None, default: int, name: str) -> int:
    """Explicit limit, or ``default`` when omitted. Non-positive limits are rejected."""
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass
class _PageRun:
    synced: int = 0
    errors: int = 0
    pages: int = 0
    next_page_token: str | None = None


class MailboxSynchronizer:
    """Mirrors upstream mailboxes into the local store.

    Pipeline per pass: list ids → fetch full messages → parse → upsert in
    chunked transactions → update sync state.

    Failure handling:
    - AuthenticationError (no usable credentials) propagates, never retried.
    - Upstream 429/5xx are retried by the fetcher; a message that still fails
      is counted as an error and skipped.
    - Parse and per-message persistence failures are counted and skipped.
    - TransactionTimeoutError propagates; committed chunks stay committed.
    """

    def __init__(
        self,
        settings: MailboxSyncSettings,
        store: MailStore,
        accounts: AccountStore,
        upstream_factory: UpstreamFactory,
        *,
        blob_store: FileBlobStore | None = None,
        parser: GmailParser | None = None,
        jobs: JobRegistry | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._store = store
        self._accounts = accounts
        self._upstream_factory = upstream_factory
        self._parser = parser or GmailParser()
        self._jobs = jobs or JobRegistry()
        self._sleep = sleep
        self._upserter = MessageUpserter(
            store,
            blob_store,
            chunk_size=settings.chunk_size,
            max_wait=settings.transaction_max_wait_seconds,
            timeout=settings.transaction_timeout_seconds,
            store_html=settings.store_html_bodies,
        )
        self._sync_state = SyncStateTracker(
            store,
            max_wait=settings.transaction_max_wait_seconds,
            timeout=settings.transaction_timeout_seconds,
        )

    @property
    def jobs(self) -> JobRegistry:
        return self._jobs

    @property
    def sync_state(self) -> SyncStateTracker:
        return self._sync_state

    async def _open_fetcher(self, user_id: str) -> MessageFetcher:
        upstream = await self._upstream_factory(user_id)
        return MessageFetcher(
            upstream,
            max_retries=self._settings.max_retries,
            base_delay_seconds=self._settings.base_delay_seconds,
            inter_batch_delay_seconds=self._settings.inter_batch_delay_seconds,
            sleep=self._sleep,
        )

    def mailbox_address(self, user_id: str) -> str:
        """Mailbox address for the user's sync state row."""
        try:
            email = self._accounts.get_account_email(user_id, self._settings.provider)
        except sqlite3.Error as e:
            logger.warning("Mailbox address lookup failed for user %s: %s", user_id, e)
            email = None
        return email or PLACEHOLDER_EMAIL

    async def _process_ids(
        self, user_id: str, fetcher: MessageFetcher, message_ids: Sequence[str]
    ) -> tuple[int, int]:
        """Fetch, parse and persist one set of ids. Returns (synced, errors)."""
        batch = await fetcher.fetch_messages_batch(message_ids, self._settings.fetch_batch_size)
        errors = len(batch.failed_ids)

        parsed: list[ParsedMessage] = []
        for raw in batch.messages:
            try:
                parsed.append(self._parser.parse(raw))
            except ParseError as e:
                logger.warning("Skipping unparseable message: %s", e)
                errors += 1

        result = await self._upserter.persist(user_id, parsed)
        return result.synced, errors + result.errors

    async def _run_pages(
        self,
        user_id: str,
        fetcher: MessageFetcher,
        *,
        max_pages: int,
        page_size: int,
        page_token: str | None = None,
        job: BackgroundJob | None = None,
    ) -> _PageRun:
        """Walk pages until one comes back empty, the token runs out, or ``max_pages``."""
        run = _PageRun(next_page_token=page_token)

        while run.pages < max_pages:
            page = await fetcher.list_message_ids(page_size, run.next_page_token)
            run.next_page_token = page.next_page_token
            if not page.message_ids:
                break

            run.pages += 1
            logger.info(
                "Syncing page %d/%d for user %s (%d messages)",
                run.pages, max_pages, user_id, len(page.message_ids),
            )
            synced, errors = await self._process_ids(user_id, fetcher, page.message_ids)
            run.synced += synced
            run.errors += errors

            if job is not None:
                job.pages_done = run.pages
                job.synced = run.synced
                job.errors = run.errors
                job.page_token = run.next_page_token

            if not run.next_page_token:
                break

        return run

    async def _finalize_full(self, user_id: str) -> None:
        await self._sync_state.mark_full_sync(
            user_id, self._settings.provider, self.mailbox_address(user_id)
        )

    async def _finalize_delta(self, user_id: str) -> None:
        await self._sync_state.mark_delta_sync(
            user_id, self._settings.provider, self.mailbox_address(user_id)
        )

    async def sync_full(
        self,
        user_id: str,
        max_pages: int | None = None,
        page_size: int | None = None,
    ) -> SyncResult:
        """Paginated bulk sync, bounded by ``max_pages``; records ``last_full_sync``."""
        max_pages = _limit(max_pages, self._settings.full_sync_max_pages, "max_pages")
        page_size = _limit(page_size, self._settings.full_sync_page_size, "page_size")
        logger.info("Starting full sync for user %s", user_id)

        fetcher = await self._open_fetcher(user_id)
        run = await self._run_pages(user_id, fetcher, max_pages=max_pages, page_size=page_size)
        await self._finalize_full(user_id)

        logger.info(
            "Full sync completed for user %s: %d synced, %d errors, %d pages",
            user_id, run.synced, run.errors, run.pages,
        )
        return SyncResult(synced=run.synced, errors=run.errors, total_pages=run.pages)

    async def sync_delta(self, user_id: str, max_messages: int | None = None) -> SyncResult:
        """Single pass over the most recent ``max_messages`` ids; records ``last_delta_sync``."""
        max_messages = _limit(max_messages, self._settings.delta_max_messages, "max_messages")
        logger.info("Starting delta sync for user %s (%d messages)", user_id, max_messages)

        fetcher = await self._open_fetcher(user_id)
        page = await fetcher.list_message_ids(max_messages)
        if not page.message_ids:
            logger.info("Delta sync for user %s: no messages", user_id)
            return SyncResult()

        synced, errors = await self._process_ids(user_id, fetcher, page.message_ids)
        await self._finalize_delta(user_id)

        logger.info(
            "Delta sync completed for user %s: %d synced, %d errors", user_id, synced, errors
        )
        return SyncResult(synced=synced, errors=errors, total_pages=1)

    async def sync_by_history(self, user_id: str, start_history_id: str) -> SyncResult:
        """Sync messages added since ``start_history_id``.

        The caller's cursor becomes the stored watermark. When the history
        yields no ids, nothing is fetched and the sync state is left untouched.
        """
        logger.info("Starting history sync for user %s from %s", user_id, start_history_id)

        fetcher = await self._open_fetcher(user_id)
        message_ids = await fetcher.list_history_message_ids(
            start_history_id, max_pages=self._settings.history_max_pages
        )
        if not message_ids:
            logger.info("History sync for user %s: no new messages", user_id)
            return SyncResult()

        synced, errors = await self._process_ids(user_id, fetcher, message_ids)

        email = self.mailbox_address(user_id)
        await self._sync_state.record_history_id(
            user_id, self._settings.provider, email, start_history_id
        )
        await self._finalize_delta(user_id)

        logger.info(
            "History sync completed for user %s: %d synced, %d errors", user_id, synced, errors
        )
        return SyncResult(synced=synced, errors=errors, total_pages=1)

    async def sync_paginated(
        self,
        user_id: str,
        page_size: int | None = None,
        continue_in_background: bool = True,
    ) -> PaginatedSyncResult:
        """Persist the first page now; optionally continue the rest in the background.

        The continuation walks at most ``background_max_pages`` pages counting
        this first one, records ``last_full_sync`` when it ends, and only logs
        its errors. When the first page already exhausts the mailbox,
        ``last_full_sync`` is recorded here instead.
        """
        page_size = _limit(page_size, self._settings.paginated_page_size, "page_size")
        logger.info("Starting paginated sync for user %s (page size %d)", user_id, page_size)

        fetcher = await self._open_fetcher(user_id)
        total_inbox = await self._inbox_total(fetcher, user_id)

        run = await self._run_pages(user_id, fetcher, max_pages=1, page_size=page_size)

        job = None
        if run.next_page_token and continue_in_background:
            job = BackgroundJob(user_id=user_id, page_token=run.next_page_token)
            self._jobs.launch(job, self._continue_in_background(job, fetcher, page_size))
            logger.info("Background sync %s started for user %s", job.job_id, user_id)
        elif not run.next_page_token:
            await self._finalize_full(user_id)

        return PaginatedSyncResult(
            synced=run.synced,
            errors=run.errors,
            total_inbox=total_inbox,
            page_size=page_size,
            background_task_started=job is not None,
            job=job,
        )

    async def _continue_in_background(
        self, job: BackgroundJob, fetcher: MessageFetcher, page_size: int
    ) -> None:
        job.status = RUNNING
        try:
            run = await self._run_pages(
                job.user_id,
                fetcher,
                max_pages=max(self._settings.background_max_pages - 1, 0),
                page_size=page_size,
                page_token=job.page_token,
                job=job,
            )
            await self._finalize_full(job.user_id)
            job.status = COMPLETED
            logger.info(
                "Background sync %s completed for user %s: %d synced, %d errors, %d pages",
                job.job_id, job.user_id, run.synced, run.errors, run.pages,
            )
        except Exception as e:
            job.status = FAILED
            job.error_message = str(e)
            logger.exception("Background sync %s failed for user %s", job.job_id, job.user_id)
        finally:
            job.finished_at = datetime.now(UTC)

    async def _inbox_total(self, fetcher: MessageFetcher, user_id: str) -> int:
        try:
            return await fetcher.get_label_total(self._settings.inbox_label)
        except UpstreamError as e:
            logger.warning("Could not read inbox total for user %s: %s", user_id, e)
            return 0

    async def get_inbox_total(self, user_id: str) -> int:
        """Upstream message count of the inbox label."""
        fetcher = await self._open_fetcher(user_id)
        return await fetcher.get_label_total(self._settings.inbox_label)

    async def sync_all_users(self) -> AllUsersSyncResult:
        """Full sync for every user with a connected account, one user at a time."""
        user_ids = self._accounts.users_with_provider(self._settings.provider)
        logger.info("Starting full sync for %d users", len(user_ids))

        total_synced = 0
        total_errors = 0
        total_pages = 0

        for user_id in user_ids:
            try:
                result = await self.sync_full(user_id)
                total_synced += result.synced
                total_errors += result.errors
                total_pages += result.total_pages
            except Exception as e:
                logger.error("Failed to sync emails for user %s: %s", user_id, e)
                total_errors += 1

        logger.info(
            "Sync for all users completed: %d users, %d synced, %d errors, %d pages",
            len(user_ids), total_synced, total_errors, total_pages,
        )
        return AllUsersSyncResult(
            total_users=len(user_ids),
            total_synced=total_synced,
            total_errors=total_errors,
            total_pages=total_pages,
        )
