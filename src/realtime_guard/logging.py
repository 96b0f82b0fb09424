"""Structured logging for the realtime updater.

Guard components log through ``log_info`` / ``log_warning`` / ``log_error`` so
they accept either a structlog logger or a plain stdlib logger. The process
entrypoint calls ``configure_structlog`` once, usually via
``GuardSettings.configure_logging()``.
"""

from __future__ import annotations

import logging
import sys
from typing import Literal, Protocol

import structlog

_LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Anything with keyword-field ``info``, ``warning`` and ``error``."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...


LoggerLike = StructuredLogger | _StdlibLogger


def get_log_level_value(level: str) -> int:
    """Map a level name such as ``" debug "`` to its stdlib constant."""
    key = level.strip().upper()
    if key not in _LOG_LEVELS:
        choices = ", ".join(sorted(_LOG_LEVELS))
        raise ValueError(f"log_level must be one of: {choices}")
    return _LOG_LEVELS[key]


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


def _log(
    logger: LoggerLike,
    level: Literal["info", "warning", "error"],
    event: str,
    **fields: object,
) -> None:
    # stdlib loggers only take structured fields through ``extra``.
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        getattr(logger, level)(event, extra=fields)
    else:
        getattr(logger, level)(event, **fields)


def log_info(logger: LoggerLike, event: str, **fields: object) -> None:
    _log(logger, "info", event, **fields)


def log_warning(logger: LoggerLike, event: str, **fields: object) -> None:
    _log(logger, "warning", event, **fields)


def log_error(logger: LoggerLike, event: str, **fields: object) -> None:
    _log(logger, "error", event, **fields)


def _pick_renderer(*, development: bool) -> structlog.types.Processor:
    if development or sys.stderr.isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _install_stderr_handler(
    level: int,
    renderer: structlog.types.Processor,
    pre_chain: list[structlog.types.Processor],
) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=level,
        force=True,
    )


def configure_structlog(
    *,
    log_level: str,
    environment: str | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib records through one stderr handler.

    Records are rendered for the console when stderr is a TTY or when
    ``environment`` is ``development``, as JSON lines otherwise. Every record
    carries ``environment`` when one is given. Calling this again replaces
    the previous setup.
    """
    level = get_log_level_value(log_level)
    development = environment is not None and environment.lower() == "development"
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        timestamper,
    ]
    _install_stderr_handler(level, _pick_renderer(development=development), pre_chain)

    structlog.contextvars.clear_contextvars()
    if environment is not None:
        structlog.contextvars.bind_contextvars(environment=environment)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger("realtime_guard")
