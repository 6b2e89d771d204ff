"""Custom exceptions for the mailbox sync engine."""

from __future__ import annotations


class MailboxSyncError(Exception):
    """Base exception for all mailbox sync errors."""


class AuthenticationError(MailboxSyncError):
    """Credentials for the upstream account are missing or unusable."""


class UpstreamError(MailboxSyncError):
    """A call to the upstream mail API failed.

    Only the subclasses below are raised; the backoff executor dispatches on
    ``retryable`` instead of probing the error's shape.
    """

    retryable = False
    status: int | None = None


class RateLimitedError(UpstreamError):
    """Upstream answered 429."""

    retryable = True
    status = 429

    def __init__(self, message: str = "rate limited", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServerError(UpstreamError):
    """Upstream answered with a 5xx status."""

    retryable = True

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message or f"upstream server error {status}")
        self.status = status


class ClientError(UpstreamError):
    """Upstream rejected the request (4xx other than 429)."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message or f"upstream client error {status}")
        self.status = status


class NetworkError(UpstreamError):
    """The request never produced an HTTP response."""


class ParseError(MailboxSyncError):
    """Failed to parse an upstream message."""


class TransactionTimeoutError(MailboxSyncError):
    """A transactional unit exceeded its wait or execution ceiling."""


class InvalidPushPayloadError(MailboxSyncError):
    """A push notification envelope could not be decoded."""
