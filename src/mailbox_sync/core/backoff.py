"""Retry-with-backoff wrapper shared by every upstream call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from mailbox_sync.core.exceptions import RateLimitedError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[object]]


def compute_delay(error: UpstreamError, attempt: int, base_delay: float) -> float:
    """Delay before the next attempt, in seconds.

    An upstream ``retry-after`` hint wins over exponential backoff
    (``base_delay * 2 ** attempt``).
    """
    if isinstance(error, RateLimitedError) and error.retry_after is not None:
        return max(error.retry_after, 0.0)
    return base_delay * (2 ** attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    context: str = "upstream call",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` and retry it on rate limiting and server errors.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_retries: Retries after the first attempt (``max_retries + 1`` attempts total).
        base_delay: Base delay in seconds for exponential backoff.
        context: Description for log messages (e.g. "list messages").
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The operation's result.

    Raises:
        UpstreamError: The last retryable error once the budget is exhausted.
        Exception: Any non-retryable error, immediately.
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except UpstreamError as e:
            if not e.retryable or attempt >= max_retries:
                raise
            delay = compute_delay(e, attempt, base_delay)
            logger.warning(
                "Retrying %s in %.2fs after %s (attempt %d/%d)",
                context, delay, e, attempt + 1, max_retries + 1,
            )
            await sleep(delay)

    # Unreachable: the last attempt either returns or raises
    raise RuntimeError(f"Retries exhausted for {context}")
