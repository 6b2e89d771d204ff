"""Records for detached background sync continuations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mailbox_sync.storage.database import new_id

logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class BackgroundJob:
    """Mutable progress record for one background continuation."""

    user_id: str
    page_token: str | None
    job_id: str = field(default_factory=new_id)
    status: str = PENDING
    pages_done: int = 0
    synced: int = 0
    errors: int = 0
    error_message: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.status in (COMPLETED, FAILED)


class JobRegistry:
    """Keeps background tasks alive and their job records observable.

    Nothing here de-duplicates launches: two continuations for the same user
    can run at once and interleave writes to the same threads.

    Only the ``keep_finished`` most recent finished records are retained; older
    ones are dropped each time a new job launches.
    """

    def __init__(self, keep_finished: int = 50) -> None:
        self._jobs: dict[str, BackgroundJob] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._keep_finished = keep_finished

    def launch(self, job: BackgroundJob, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        self._prune()
        self._jobs[job.job_id] = job
        task = asyncio.create_task(coro, name=f"sync-continuation-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        return task

    def _prune(self) -> None:
        # A record is finished once its task is gone; dict order is launch order
        finished = [job_id for job_id in self._jobs if job_id not in self._tasks]
        for job_id in finished[:max(0, len(finished) - self._keep_finished)]:
            del self._jobs[job_id]

    def get(self, job_id: str) -> BackgroundJob | None:
        return self._jobs.get(job_id)

    def jobs_for_user(self, user_id: str) -> list[BackgroundJob]:
        return [job for job in self._jobs.values() if job.user_id == user_id]

    def active_jobs(self, user_id: str | None = None) -> list[BackgroundJob]:
        return [
            job for job in self._jobs.values()
            if not job.done and (user_id is None or job.user_id == user_id)
        ]

    async def wait_all(self) -> None:
        """Wait for every running continuation to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
