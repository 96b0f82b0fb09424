"""Fault-isolating wrapper around the realtime feed update.

``RealtimeUpdateGuard`` owns two circuit breakers and decides, per call, how
much protection the update gets:

  - passthrough: the guard is disabled and the operation runs untouched.
  - lightweight: the upstream already enforces its own timeout, so outcomes
    are only recorded. Errors propagate to the caller.
  - full protection: the operation runs through a breaker with classified,
    bounded retries. Terminal failures become a ``FallbackResult`` instead of
    an exception.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from functools import partial
from typing import TypeVar

from tenacity import RetryCallState
from tenacity.retry import retry_if_exception

from realtime_guard.circuit_breaker import (
    BreakerListener,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from realtime_guard.classification import classify_error, is_retryable
from realtime_guard.errors import ErrorKind
from realtime_guard.health import (
    HealthSnapshot,
    HealthStats,
    build_health_snapshot,
    build_health_stats,
)
from realtime_guard.logging import (
    LoggerLike,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from realtime_guard.retry import RetryBackoffPolicy, build_exponential_retrying
from realtime_guard.settings import NETWORK_FAILURE_THRESHOLD, GuardSettings

T = TypeVar("T")

FALLBACK_MESSAGE = "Using cached realtime data due to update failures"
NATIVE_TIMEOUT_FIELDS = (
    "realtime_timeout",
    "timeout",
    "download_timeout",
    "realtimeTimeout",
    "downloadTimeout",
)
NETWORK_BREAKER_AFTER_FAILURES = 2


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_operation_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class GuardMode(StrEnum):
    """How much protection the guard applies to an update."""

    PASSTHROUGH = "passthrough"
    LIGHTWEIGHT = "lightweight"
    FULL_PROTECTION = "full_protection"


@dataclass(frozen=True)
class FallbackResult:
    """Returned instead of raising once an update has failed for good.

    Callers keep serving the realtime data they already have.
    ``time_since_last_success`` is in seconds, ``None`` if no update ever
    succeeded.
    """

    time_since_last_success: float | None
    message: str = FALLBACK_MESSAGE
    success: bool = False
    fallback_applied: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "fallback_applied": self.fallback_applied,
            "message": self.message,
            "time_since_last_success": self.time_since_last_success,
        }


def detect_native_timeout(feed_config: object) -> bool:
    """Return whether ``feed_config`` carries its own timeout setting."""
    if feed_config is None:
        return False
    if isinstance(feed_config, Mapping):
        values = [feed_config.get(field) for field in NATIVE_TIMEOUT_FIELDS]
    else:
        values = [getattr(feed_config, field, None) for field in NATIVE_TIMEOUT_FIELDS]
    return any(bool(value) for value in values)


def _should_retry(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and is_retryable(classify_error(exc))


class BreakerLoggingListener(BreakerListener):
    """Log breaker transitions and call outcomes as structured events."""

    def __init__(self, logger: LoggerLike, *, verbose: bool = False) -> None:
        self._logger = logger
        self._verbose = verbose

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        log = log_warning if new == CircuitState.OPEN else log_info
        log(
            self._logger,
            "breaker_state_changed",
            breaker=name,
            old_state=old.value,
            new_state=new.value,
        )

    async def on_call_rejected(self, name: str, retry_after: float) -> None:
        log_warning(
            self._logger,
            "breaker_call_rejected",
            breaker=name,
            retry_after_seconds=round(retry_after, 3),
        )

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        if self._verbose:
            log_info(
                self._logger,
                "breaker_call_succeeded",
                breaker=name,
                elapsed_seconds=round(elapsed, 3),
            )

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        log_error(
            self._logger,
            "breaker_call_failed",
            breaker=name,
            elapsed_seconds=round(elapsed, 3),
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


class RealtimeUpdateGuard:
    """Orchestrate breaker selection, retries and fallback for feed updates.

    Build one instance per process and share it with every caller that
    triggers updates or reads health. All state lives in memory.
    """

    def __init__(
        self,
        settings: GuardSettings | None = None,
        *,
        logger: LoggerLike | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Create the guard and its ``main`` and ``network`` breakers.

        Args:
            settings: Guard configuration. Defaults to ``GuardSettings()``,
                which reads the environment.
            logger: Structured logger. Defaults to the module structlog logger.
            sleep: Async sleep used between retries. Defaults to
                ``asyncio.sleep``.
        """
        self.settings = GuardSettings() if settings is None else settings
        self._logger = get_logger(__name__) if logger is None else logger
        self._sleep = sleep
        self._backoff = RetryBackoffPolicy.from_max_retries(self.settings.max_retries)

        listener = BreakerLoggingListener(
            self._logger, verbose=self.settings.logging_enabled
        )
        self.breakers: dict[str, CircuitBreaker] = {
            "main": CircuitBreaker(
                "realtime-main",
                config=CircuitBreakerConfig(
                    failure_threshold=self.settings.failure_threshold,
                    timeout=self.settings.timeout_seconds,
                    reset_timeout=self.settings.reset_timeout_seconds,
                ),
                listeners=[listener],
            ),
            "network": CircuitBreaker(
                "realtime-network",
                config=CircuitBreakerConfig(
                    failure_threshold=NETWORK_FAILURE_THRESHOLD,
                    timeout=self.settings.timeout_seconds,
                    reset_timeout=self.settings.reset_timeout_seconds,
                ),
                listeners=[listener],
            ),
        }

        self.native_timeout_supported = False
        self.wrapper_enabled = True
        self._capabilities_detected = False
        self.last_successful_update: datetime | None = None
        self.consecutive_failures = 0

    @property
    def mode(self) -> GuardMode:
        if not self.wrapper_enabled:
            return GuardMode.PASSTHROUGH
        if self.native_timeout_supported:
            return GuardMode.LIGHTWEIGHT
        return GuardMode.FULL_PROTECTION

    def detect_capabilities(self, feed_config: object) -> None:
        """Pick the protection mode from the upstream configuration.

        Runs once, on the first update.
        """
        if detect_native_timeout(feed_config):
            self.native_timeout_supported = True
            log_info(
                self._logger,
                "native_timeout_detected",
                mode=GuardMode.LIGHTWEIGHT.value,
            )
        if self.settings.disable_wrapper:
            self.wrapper_enabled = False
            log_warning(
                self._logger,
                "update_guard_disabled",
                mode=GuardMode.PASSTHROUGH.value,
            )
        self._capabilities_detected = True

    def select_breaker(self) -> CircuitBreaker:
        """Route through the network breaker after repeated whole-update failures."""
        if self.consecutive_failures >= NETWORK_BREAKER_AFTER_FAILURES:
            return self.breakers["network"]
        return self.breakers["main"]

    async def update(
        self,
        operation: Callable[[], Awaitable[T]],
        feed_config: object = None,
    ) -> T | FallbackResult:
        """Run one realtime update under the current protection mode.

        Args:
            operation: Zero-argument async callable performing the update.
            feed_config: Upstream configuration, inspected on the first call
                for a native timeout.

        Returns:
            The operation result, or a ``FallbackResult`` when a fully
            protected update failed after all retries.

        Raises:
            Exception: In passthrough and lightweight modes, whatever
                ``operation`` raised.
        """
        if not self._capabilities_detected:
            self.detect_capabilities(feed_config)

        mode = self.mode
        if mode == GuardMode.PASSTHROUGH:
            return await operation()
        if mode == GuardMode.LIGHTWEIGHT:
            return await self._run_lightweight(operation)
        return await self._run_protected(operation)

    async def _run_lightweight(self, operation: Callable[[], Awaitable[T]]) -> T:
        operation_id = _new_operation_id("native")
        main = self.breakers["main"]
        start = time.monotonic()
        try:
            result = await operation()
        except Exception as exc:
            elapsed = time.monotonic() - start
            kind = classify_error(exc)
            self.consecutive_failures += 1
            log_error(
                self._logger,
                "feed_update_native_failed",
                operation_id=operation_id,
                error=str(exc),
                error_type=kind.value,
                consecutive_failures=self.consecutive_failures,
            )
            await main.record_failure(
                exc, elapsed, timed_out=kind == ErrorKind.TIMEOUT
            )
            raise

        elapsed = time.monotonic() - start
        self._on_update_success(operation_id)
        await main.record_success(elapsed)
        return result

    async def _run_protected(
        self, operation: Callable[[], Awaitable[T]]
    ) -> T | FallbackResult:
        operation_id = _new_operation_id("feed-update")
        if self.settings.logging_enabled:
            log_info(self._logger, "feed_update_started", operation_id=operation_id)

        retrying = build_exponential_retrying(
            retry=retry_if_exception(_should_retry),
            policy=self._backoff,
            sleep=self._sleep,
            before_sleep=partial(self._log_retry, operation_id),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    breaker = self.select_breaker()
                    result = await breaker.execute(operation)
        except Exception as exc:
            attempts = retrying.statistics.get("attempt_number", 1)
            return self._on_terminal_failure(exc, operation_id, attempts=attempts)

        self._on_update_success(operation_id)
        return result

    def _log_retry(self, operation_id: str, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        next_action = retry_state.next_action
        log_warning(
            self._logger,
            "feed_update_retry_scheduled",
            operation_id=operation_id,
            retry=retry_state.attempt_number,
            max_retries=self._backoff.max_retries,
            delay_seconds=next_action.sleep if next_action is not None else 0.0,
            error=str(exc),
            error_type=classify_error(exc).value if exc is not None else None,
            consecutive_failures=self.consecutive_failures,
        )

    def _on_update_success(self, operation_id: str) -> None:
        self.last_successful_update = _utcnow()
        self.consecutive_failures = 0
        if self.settings.logging_enabled:
            log_info(self._logger, "feed_update_succeeded", operation_id=operation_id)

    def _on_terminal_failure(
        self, exc: Exception, operation_id: str, *, attempts: int
    ) -> FallbackResult:
        kind = classify_error(exc)
        self.consecutive_failures += 1
        if kind == ErrorKind.CIRCUIT_BREAKER:
            log_warning(
                self._logger,
                "feed_update_skipped_circuit_open",
                operation_id=operation_id,
                error=str(exc),
                consecutive_failures=self.consecutive_failures,
            )
        else:
            log_error(
                self._logger,
                "feed_update_failed",
                operation_id=operation_id,
                error=str(exc),
                error_type=kind.value,
                attempts=attempts,
                retryable=is_retryable(kind),
                consecutive_failures=self.consecutive_failures,
            )
        return self._graceful_fallback(operation_id)

    def _graceful_fallback(self, operation_id: str) -> FallbackResult:
        last_success = self.last_successful_update
        time_since_last_success = (
            None
            if last_success is None
            else (_utcnow() - last_success).total_seconds()
        )
        log_info(
            self._logger,
            "feed_update_fallback_applied",
            operation_id=operation_id,
            last_successful_update=(
                None if last_success is None else last_success.isoformat()
            ),
            time_since_last_success=time_since_last_success,
            strategy="continue_with_cached_data",
        )
        return FallbackResult(time_since_last_success=time_since_last_success)

    def get_health_stats(self) -> HealthStats:
        """Return counters for the guard and each breaker."""
        return build_health_stats(self)

    def get_health_status(self, *, now: datetime | None = None) -> HealthSnapshot:
        """Return the aggregated health snapshot used by monitoring."""
        return build_health_snapshot(self, now=_utcnow() if now is None else now)
