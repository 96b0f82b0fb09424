"""Shared error types for realtime_guard."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    """Failure categories used to decide whether an update is retried."""

    NETWORK = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    DATA_FORMAT = "DATA_FORMAT_ERROR"
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


class FeedError(RuntimeError):
    """Base exception for realtime feed fetch failures.

    Subclasses are tagged with the ``ErrorKind`` the update guard uses to
    decide whether a failure is worth retrying.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, feed: str | None = None) -> None:
        super().__init__(message)
        self.feed = feed


class FeedNetworkError(FeedError):
    """Raised when the feed provider cannot be reached."""

    kind = ErrorKind.NETWORK


class FeedTimeoutError(FeedError):
    """Raised when the feed provider does not answer in time."""

    kind = ErrorKind.TIMEOUT


class FeedFormatError(FeedError):
    """Raised when the provider returns an unusable payload."""

    kind = ErrorKind.DATA_FORMAT


class FeedHttpError(FeedError):
    """Raised for unexpected HTTP status codes from the feed provider."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        feed: str | None = None,
    ) -> None:
        super().__init__(message, feed=feed)
        self.status_code = status_code
