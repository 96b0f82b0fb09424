from __future__ import annotations

import httpx
import pytest

from realtime_guard.circuit_breaker import CircuitOpenError, OperationTimeoutError
from realtime_guard.classification import RETRYABLE_KINDS, classify_error, is_retryable
from realtime_guard.errors import (
    ErrorKind,
    FeedError,
    FeedFormatError,
    FeedHttpError,
    FeedNetworkError,
    FeedTimeoutError,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (CircuitOpenError("realtime-main", retry_after=12.0), ErrorKind.CIRCUIT_BREAKER),
        (FeedNetworkError("provider down"), ErrorKind.NETWORK),
        (FeedTimeoutError("slow provider"), ErrorKind.TIMEOUT),
        (FeedFormatError("bad payload"), ErrorKind.DATA_FORMAT),
        (ConnectionResetError("reset by peer"), ErrorKind.NETWORK),
        (httpx.ConnectError("refused"), ErrorKind.NETWORK),
        (TimeoutError(), ErrorKind.TIMEOUT),
        (OperationTimeoutError("realtime-main", 30.0), ErrorKind.TIMEOUT),
        (httpx.ReadTimeout("read"), ErrorKind.TIMEOUT),
    ],
)
def test_structured_errors_are_classified_by_type(
    exc: Exception,
    expected: ErrorKind,
) -> None:
    assert classify_error(exc) == expected


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("circuit_open: upstream", ErrorKind.CIRCUIT_BREAKER),
        ("fetch failed", ErrorKind.NETWORK),
        ("connect ECONNREFUSED 10.0.0.1:443", ErrorKind.NETWORK),
        ("Connection refused by host", ErrorKind.NETWORK),
        ("Request TIMEOUT", ErrorKind.TIMEOUT),
        ("operation timed out", ErrorKind.TIMEOUT),
        ("header missing gtfsRealtimeVersion", ErrorKind.DATA_FORMAT),
        ("invalid Protobuf wire type", ErrorKind.DATA_FORMAT),
        ("something odd", ErrorKind.UNKNOWN),
        ("", ErrorKind.UNKNOWN),
    ],
)
def test_plain_errors_are_classified_by_message(
    message: str,
    expected: ErrorKind,
) -> None:
    assert classify_error(RuntimeError(message)) == expected


def test_message_precedence_prefers_network_over_timeout() -> None:
    assert classify_error(RuntimeError("fetch failed after timeout")) == (
        ErrorKind.NETWORK
    )


def test_type_wins_over_misleading_message() -> None:
    exc = FeedFormatError("protobuf decode failed: connection refused")

    assert classify_error(exc) == ErrorKind.DATA_FORMAT


def test_untagged_feed_errors_fall_back_to_message() -> None:
    assert classify_error(FeedError("request timed out")) == ErrorKind.TIMEOUT
    assert (
        classify_error(FeedHttpError("HTTP 404", status_code=404)) == ErrorKind.UNKNOWN
    )


def test_retryable_kinds() -> None:
    assert RETRYABLE_KINDS == {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.UNKNOWN}
    assert is_retryable(ErrorKind.NETWORK)
    assert is_retryable(ErrorKind.TIMEOUT)
    assert is_retryable(ErrorKind.UNKNOWN)
    assert not is_retryable(ErrorKind.DATA_FORMAT)
    assert not is_retryable(ErrorKind.CIRCUIT_BREAKER)


def test_error_kind_values() -> None:
    assert [kind.value for kind in ErrorKind] == [
        "NETWORK_ERROR",
        "TIMEOUT_ERROR",
        "DATA_FORMAT_ERROR",
        "CIRCUIT_BREAKER_ERROR",
        "UNKNOWN_ERROR",
    ]
