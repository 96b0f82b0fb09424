from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Protocol, cast

import pytest
import structlog

from realtime_guard.logging import (
    configure_structlog,
    get_log_level_value,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from realtime_guard.settings import GuardSettings
from tests.realtime_guard.support.fakes import FakeLogger


def _configured_renderer() -> object:
    root_handler = logging.getLogger().handlers[0]
    formatter = root_handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class _RecordWithFeedFields(Protocol):
    feed: str
    attempt: int


def test_get_log_level_value_maps_known_levels() -> None:
    assert get_log_level_value("debug") == logging.DEBUG
    assert get_log_level_value("INFO") == logging.INFO
    assert get_log_level_value(" warning ") == logging.WARNING
    assert get_log_level_value("ERROR") == logging.ERROR
    assert get_log_level_value("critical") == logging.CRITICAL


def test_get_log_level_value_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="log_level must be one of"):
        get_log_level_value("TRACE")


def test_configure_structlog_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    first_logger = configure_structlog(log_level="INFO")
    second_logger = configure_structlog(log_level="DEBUG")

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert first_logger is not None
    assert second_logger is not None


def test_configure_structlog_uses_console_renderer_for_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: True, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_configured_renderer(), structlog.dev.ConsoleRenderer)


def test_configure_structlog_uses_json_renderer_for_non_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    configure_structlog(log_level="WARNING")

    assert isinstance(_configured_renderer(), structlog.processors.JSONRenderer)
    assert logging.getLogger().level == logging.WARNING


def test_get_logger_returns_structlog_proxy() -> None:
    logger = get_logger("realtime_guard.tests")

    assert hasattr(logger, "info")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
        (log_error, "error"),
    ],
)
def test_structured_log_helpers_forward_keyword_fields(
    log_fn: Callable[..., None],
    level: str,
) -> None:
    logger = FakeLogger()

    log_fn(logger, "feed_update_failed", feed="alerts", attempt=3)

    assert logger.calls == [
        (level, "feed_update_failed", {"feed": "alerts", "attempt": 3})
    ]


def test_structured_log_helpers_support_stdlib_logger_extra() -> None:
    logger = logging.getLogger("tests.realtime_guard.logging.helpers")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)

    log_warning(logger, "feed_update_retry_scheduled", feed="alerts", attempt=2)

    assert len(handler.records) == 1
    record = handler.records[0]
    typed_record = cast(_RecordWithFeedFields, record)
    assert record.getMessage() == "feed_update_retry_scheduled"
    assert record.levelno == logging.WARNING
    assert typed_record.feed == "alerts"
    assert typed_record.attempt == 2


def test_configure_structlog_uses_console_renderer_in_development(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    configure_structlog(log_level="INFO", environment="Development")

    assert isinstance(_configured_renderer(), structlog.dev.ConsoleRenderer)
    structlog.contextvars.clear_contextvars()


def test_guard_settings_configure_logging_applies_level_and_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    settings = GuardSettings(log_level="error", environment="staging")

    logger = settings.configure_logging()

    assert logger is not None
    assert logging.getLogger().level == logging.ERROR
    assert isinstance(_configured_renderer(), structlog.processors.JSONRenderer)
    assert structlog.contextvars.get_contextvars() == {"environment": "staging"}
    structlog.contextvars.clear_contextvars()
