"""Tests for the retry-with-backoff executor."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from mailbox_sync.core.backoff import compute_delay, retry_with_backoff
from mailbox_sync.core.exceptions import (
    ClientError,
    NetworkError,
    RateLimitedError,
    ServerError,
)


# ---------- compute_delay ----------


class TestComputeDelay:
    """Tests for the delay schedule."""

    def test_exponential_schedule(self) -> None:
        """Without a hint the delay doubles per attempt."""
        error = ServerError(503)
        assert [compute_delay(error, k, 1.0) for k in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_retry_after_hint_wins(self) -> None:
        """A rate-limit retry-after hint replaces the exponential delay."""
        error = RateLimitedError(retry_after=7.0)
        assert compute_delay(error, 3, 1.0) == 7.0

    def test_rate_limit_without_hint_uses_backoff(self) -> None:
        """429 without retry-after falls back to base * 2^attempt."""
        assert compute_delay(RateLimitedError(), 2, 0.5) == 2.0


# ---------- retry_with_backoff ----------


class TestRetryWithBackoff:
    """Tests for retry_with_backoff()."""

    async def test_returns_first_success(self) -> None:
        """A successful first attempt never sleeps."""
        operation = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        assert await retry_with_backoff(operation, sleep=sleep) == "ok"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_rate_limited_exhausts_budget(self) -> None:
        """Persistent 429s run max_retries + 1 attempts with doubling delays."""
        operation = AsyncMock(side_effect=RateLimitedError())
        sleep = AsyncMock()

        with pytest.raises(RateLimitedError):
            await retry_with_backoff(operation, max_retries=3, base_delay=1.0, sleep=sleep)

        assert operation.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    async def test_retry_after_is_honored(self) -> None:
        """The delay before the retry is the server's hint."""
        operation = AsyncMock(side_effect=[RateLimitedError(retry_after=12.0), "done"])
        sleep = AsyncMock()

        result = await retry_with_backoff(operation, base_delay=1.0, sleep=sleep)

        assert result == "done"
        sleep.assert_awaited_once_with(12.0)

    async def test_server_error_then_success(self) -> None:
        """5xx responses are retried until the operation succeeds."""
        operation = AsyncMock(side_effect=[ServerError(500), ServerError(502), "ok"])
        sleep = AsyncMock()

        assert await retry_with_backoff(operation, base_delay=0.5, sleep=sleep) == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.parametrize(
        "error", [ClientError(404), ClientError(403), NetworkError("connection reset")]
    )
    async def test_non_retryable_errors_raise_immediately(self, error: Exception) -> None:
        """Client and network errors surface on the first attempt."""
        operation = AsyncMock(side_effect=error)
        sleep = AsyncMock()

        with pytest.raises(type(error)):
            await retry_with_backoff(operation, sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_foreign_exceptions_propagate(self) -> None:
        """Exceptions outside the upstream error set are never retried."""
        operation = AsyncMock(side_effect=KeyError("id"))
        sleep = AsyncMock()

        with pytest.raises(KeyError):
            await retry_with_backoff(operation, sleep=sleep)
        assert operation.await_count == 1

    async def test_zero_retries_means_one_attempt(self) -> None:
        """max_retries=0 makes exactly one attempt."""
        operation = AsyncMock(side_effect=ServerError(500))
        sleep = AsyncMock()

        with pytest.raises(ServerError):
            await retry_with_backoff(operation, max_retries=0, sleep=sleep)
        assert operation.await_count == 1
