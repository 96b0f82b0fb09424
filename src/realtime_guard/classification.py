"""Failure classification for realtime feed updates.

Structured signals win: breaker rejections, tagged ``FeedError`` subclasses,
and the connection/timeout exception families of the stdlib and httpx.
Message heuristics only apply to errors that carry none of those.
"""

from __future__ import annotations

import httpx

from realtime_guard.circuit_breaker import CircuitOpenError
from realtime_guard.errors import ErrorKind, FeedError

RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.UNKNOWN})

_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    httpx.NetworkError,
)
_TIMEOUT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TimeoutError,
    httpx.TimeoutException,
)

# Ordered by precedence.
_MESSAGE_SIGNATURES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.CIRCUIT_BREAKER, ("circuit_open",)),
    (ErrorKind.NETWORK, ("fetch failed", "econnrefused", "connection refused")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.DATA_FORMAT, ("gtfsrealtimeversion", "protobuf")),
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the failure category for ``exc``."""
    if isinstance(exc, CircuitOpenError):
        return ErrorKind.CIRCUIT_BREAKER
    if isinstance(exc, FeedError) and exc.kind != ErrorKind.UNKNOWN:
        return exc.kind
    if isinstance(exc, _NETWORK_EXCEPTIONS):
        return ErrorKind.NETWORK
    if isinstance(exc, _TIMEOUT_EXCEPTIONS):
        return ErrorKind.TIMEOUT
    return _classify_message(str(exc))


def _classify_message(message: str) -> ErrorKind:
    normalized = message.lower()
    for kind, signatures in _MESSAGE_SIGNATURES:
        if any(signature in normalized for signature in signatures):
            return kind
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind) -> bool:
    """Return whether failures of ``kind`` are worth another attempt."""
    return kind in RETRYABLE_KINDS
