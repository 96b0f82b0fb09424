"""Core circuit breaker implementation."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TypeVar

from realtime_guard.circuit_breaker.exceptions import (
    CircuitOpenError,
    OperationTimeoutError,
)
from realtime_guard.circuit_breaker.metrics import BreakerListener
from realtime_guard.circuit_breaker.state import (
    BreakerSnapshot,
    BreakerStats,
    CircuitState,
    HealthStatus,
)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _discard_outcome(task: asyncio.Future[object]) -> None:
    with suppress(asyncio.CancelledError, Exception):
        task.exception()


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required before opening.
        timeout: Seconds an admitted call may run before it counts as failed.
        reset_timeout: Seconds to wait after the last failure while ``OPEN``
            before admitting a probe.
        cancel_on_timeout: Cancel the operation when the timeout fires. When
            ``False`` the operation keeps running in the background and its
            outcome is discarded; sockets and memory it holds are released
            only when it settles on its own.
    """

    failure_threshold: int = 5
    timeout: float = 30.0
    reset_timeout: float = 60.0
    cancel_on_timeout: bool = True

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")


class CircuitBreaker:
    """Stateful proxy around an unreliable async operation."""

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Unique breaker name used in errors, logs and health output.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at: datetime | None = None
        self.stats = BreakerStats()
        self._probe_in_flight = False

    async def _notify(self, event: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, event)(self.name, *args)
            except Exception:
                continue

    def _retry_after(self, now: datetime) -> float:
        if self.last_failure_at is None:
            return 0.0
        elapsed = (now - self.last_failure_at).total_seconds()
        return max(self.config.reset_timeout - elapsed, 0.0)

    async def _reject(self, retry_after: float) -> CircuitOpenError:
        await self._notify("on_call_rejected", retry_after)
        return CircuitOpenError(self.name, retry_after=retry_after)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``operation`` under circuit breaker protection.

        Every call counts towards ``stats.total_requests``, including calls
        rejected without running the operation.

        Args:
            operation: Zero-argument async callable to run.

        Returns:
            The result of ``operation`` when admitted and successful.

        Raises:
            CircuitOpenError: The circuit is open, or a probe is already in
                flight.
            OperationTimeoutError: The operation did not settle within
                ``config.timeout``.
            Exception: The original exception raised by ``operation``.
        """
        self.stats.total_requests += 1
        is_probe = False
        half_opened = False

        if self.state == CircuitState.OPEN:
            retry_after = self._retry_after(_utcnow())
            if retry_after > 0:
                raise await self._reject(retry_after)
            self.state = CircuitState.HALF_OPEN
            half_opened = True
        elif self.state == CircuitState.HALF_OPEN and self._probe_in_flight:
            raise await self._reject(0.0)

        if self.state == CircuitState.HALF_OPEN:
            self._probe_in_flight = True
            is_probe = True

        # The probe flag must be released even if the caller is cancelled
        # while a listener is handling the HALF_OPEN transition.
        try:
            if half_opened:
                await self._notify(
                    "on_state_change", CircuitState.OPEN, CircuitState.HALF_OPEN
                )
            return await self._call(operation)
        finally:
            if is_probe:
                self._probe_in_flight = False

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        start = time.monotonic()
        try:
            result = await self._run_with_timeout(operation)
        except OperationTimeoutError as exc:
            await self._on_failure(exc, time.monotonic() - start, timed_out=True)
            raise
        except Exception as exc:
            await self._on_failure(exc, time.monotonic() - start)
            raise
        await self._on_success(time.monotonic() - start)
        return result

    async def _run_with_timeout(self, operation: Callable[[], Awaitable[T]]) -> T:
        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=self.config.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            if self.config.cancel_on_timeout:
                task.cancel()
            task.add_done_callback(_discard_outcome)
            raise OperationTimeoutError(self.name, self.config.timeout)
        return task.result()

    async def record_success(self, elapsed: float) -> None:
        """Record a success for a call made outside ``execute``."""
        self.stats.total_requests += 1
        await self._on_success(elapsed)

    async def record_failure(
        self, exc: Exception, elapsed: float, *, timed_out: bool = False
    ) -> None:
        """Record a failure for a call made outside ``execute``."""
        self.stats.total_requests += 1
        await self._on_failure(exc, elapsed, timed_out=timed_out)

    async def _on_success(self, elapsed: float) -> None:
        previous = self.state
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.stats.successful_requests += 1
        self.stats.last_success_at = _utcnow()
        self.stats.record_response_time(elapsed)

        if previous != CircuitState.CLOSED:
            await self._notify("on_state_change", previous, CircuitState.CLOSED)
        await self._notify("on_call_succeeded", max(elapsed, 0.0))

    async def _on_failure(
        self, exc: Exception, elapsed: float, *, timed_out: bool = False
    ) -> None:
        now = _utcnow()
        previous = self.state
        self.failure_count += 1
        self.stats.failed_requests += 1
        if timed_out:
            self.stats.timeouts += 1
        self.last_failure_at = now
        self.stats.last_failure_at = now
        self.stats.record_response_time(elapsed)

        opened = (
            self.failure_count >= self.config.failure_threshold
            and previous != CircuitState.OPEN
        )
        if opened:
            self.state = CircuitState.OPEN
            self.stats.circuit_open_count += 1

        await self._notify("on_call_failed", exc, max(elapsed, 0.0))
        if opened:
            await self._notify("on_state_change", previous, CircuitState.OPEN)

    def health_status(self) -> HealthStatus:
        """Classify breaker health from its state and success rate."""
        if self.state == CircuitState.OPEN:
            return HealthStatus.CRITICAL
        if self.stats.total_requests > 0:
            success_rate = self.stats.health_success_rate
            if success_rate < 50:
                return HealthStatus.DEGRADED
            if success_rate <= 90:
                return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    def snapshot(self) -> BreakerSnapshot:
        """Return an immutable view of the breaker state and statistics."""
        stats = self.stats
        return BreakerSnapshot(
            name=self.name,
            state=self.state,
            failure_count=self.failure_count,
            health_status=self.health_status(),
            total_requests=stats.total_requests,
            successful_requests=stats.successful_requests,
            failed_requests=stats.failed_requests,
            timeouts=stats.timeouts,
            circuit_open_count=stats.circuit_open_count,
            average_response_time=stats.average_response_time,
            last_success_at=stats.last_success_at,
            last_failure_at=stats.last_failure_at,
        )
