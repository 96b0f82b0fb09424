from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING, TypeVar

from realtime_guard.circuit_breaker import BreakerSnapshot, CircuitState, HealthStatus

if TYPE_CHECKING:
    from realtime_guard.guard import RealtimeUpdateGuard

CRITICAL_CONSECUTIVE_FAILURES = 5
STALE_UPDATE_AFTER = timedelta(minutes=5)
_UNAVAILABLE_STATUSES = frozenset({HealthStatus.DEGRADED, HealthStatus.CRITICAL})

V = TypeVar("V")


def _isoformat(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _freeze(mapping: Mapping[str, V]) -> Mapping[str, V]:
    return MappingProxyType(dict(mapping))


def aggregate_health(
    *,
    breaker_states: Iterable[CircuitState],
    consecutive_failures: int,
    last_successful_update: datetime | None,
    now: datetime,
) -> HealthStatus:
    """Combine breaker states and guard counters into one health status.

    A stale last success is checked last and reports ``DEGRADED`` even when a
    breaker is open.
    """
    if any(state == CircuitState.OPEN for state in breaker_states):
        status = HealthStatus.CRITICAL
    elif consecutive_failures >= CRITICAL_CONSECUTIVE_FAILURES:
        status = HealthStatus.CRITICAL
    elif consecutive_failures >= 1:
        status = HealthStatus.WARNING
    else:
        status = HealthStatus.HEALTHY

    if (
        last_successful_update is not None
        and now - last_successful_update > STALE_UPDATE_AFTER
    ):
        status = HealthStatus.DEGRADED
    return status


@dataclass(frozen=True)
class HealthStats:
    """Guard counters plus one snapshot per breaker."""

    last_successful_update: datetime | None
    consecutive_failures: int
    circuit_breakers: Mapping[str, BreakerSnapshot] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "circuit_breakers", _freeze(self.circuit_breakers))

    def to_dict(self) -> dict[str, object]:
        return {
            "last_successful_update": _isoformat(self.last_successful_update),
            "consecutive_failures": self.consecutive_failures,
            "circuit_breakers": {
                name: snapshot.to_dict()
                for name, snapshot in self.circuit_breakers.items()
            },
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Aggregated health of the realtime update pipeline at ``timestamp``."""

    status: HealthStatus
    timestamp: datetime
    stats: HealthStats

    @property
    def last_successful_update(self) -> datetime | None:
        return self.stats.last_successful_update

    @property
    def consecutive_failures(self) -> int:
        return self.stats.consecutive_failures

    @property
    def circuit_breakers(self) -> Mapping[str, BreakerSnapshot]:
        return self.stats.circuit_breakers

    @property
    def http_status(self) -> int:
        """HTTP status a monitoring endpoint should answer with."""
        return 503 if self.status in _UNAVAILABLE_STATUSES else 200

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            **self.stats.to_dict(),
        }


@dataclass(frozen=True)
class BreakerMetrics:
    """Monitoring figures for one breaker."""

    name: str
    state: CircuitState
    success_rate: float
    average_response_time: float
    total_requests: int
    timeouts: int
    circuit_open_count: int
    last_success_ago: int | None
    last_failure_ago: int | None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "state": self.state.value,
            "success_rate": self.success_rate,
            "average_response_time": self.average_response_time,
            "total_requests": self.total_requests,
            "timeouts": self.timeouts,
            "circuit_open_count": self.circuit_open_count,
            "last_success_ago": self.last_success_ago,
            "last_failure_ago": self.last_failure_ago,
        }


@dataclass(frozen=True)
class MetricsSnapshot:
    """Monitoring figures for the guard and each breaker at ``timestamp``."""

    timestamp: datetime
    mode: str
    native_timeout: bool
    consecutive_failures: int
    last_success_ago: int | None
    circuit_breakers: Mapping[str, BreakerMetrics] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "circuit_breakers", _freeze(self.circuit_breakers))

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "mode": self.mode,
            "native_timeout": self.native_timeout,
            "consecutive_failures": self.consecutive_failures,
            "last_success_ago": self.last_success_ago,
            "circuit_breakers": {
                name: metrics.to_dict()
                for name, metrics in self.circuit_breakers.items()
            },
        }


def success_rate(snapshot: BreakerSnapshot) -> float:
    """Success percentage rounded to 2 decimals, ``0.0`` without traffic."""
    if snapshot.total_requests == 0:
        return 0.0
    return round(snapshot.successful_requests * 100 / snapshot.total_requests, 2)


def seconds_ago(then: datetime | None, now: datetime) -> int | None:
    """Whole seconds elapsed since ``then``, ``None`` if it never happened."""
    if then is None:
        return None
    return math.floor((now - then).total_seconds())


def build_health_stats(guard: RealtimeUpdateGuard) -> HealthStats:
    return HealthStats(
        last_successful_update=guard.last_successful_update,
        consecutive_failures=guard.consecutive_failures,
        circuit_breakers={
            name: breaker.snapshot() for name, breaker in guard.breakers.items()
        },
    )


def build_health_snapshot(
    guard: RealtimeUpdateGuard,
    *,
    now: datetime | None = None,
) -> HealthSnapshot:
    """Compute the aggregated health snapshot for ``guard``."""
    resolved_now = datetime.now(UTC) if now is None else now
    stats = build_health_stats(guard)
    status = aggregate_health(
        breaker_states=(
            snapshot.state for snapshot in stats.circuit_breakers.values()
        ),
        consecutive_failures=stats.consecutive_failures,
        last_successful_update=stats.last_successful_update,
        now=resolved_now,
    )
    return HealthSnapshot(status=status, timestamp=resolved_now, stats=stats)


def build_metrics_snapshot(
    guard: RealtimeUpdateGuard,
    *,
    now: datetime | None = None,
) -> MetricsSnapshot:
    """Compute per-breaker monitoring figures for ``guard``."""
    resolved_now = datetime.now(UTC) if now is None else now
    breakers: dict[str, BreakerMetrics] = {}
    for name, breaker in guard.breakers.items():
        snapshot = breaker.snapshot()
        breakers[name] = BreakerMetrics(
            name=snapshot.name,
            state=snapshot.state,
            success_rate=success_rate(snapshot),
            average_response_time=snapshot.average_response_time,
            total_requests=snapshot.total_requests,
            timeouts=snapshot.timeouts,
            circuit_open_count=snapshot.circuit_open_count,
            last_success_ago=seconds_ago(snapshot.last_success_at, resolved_now),
            last_failure_ago=seconds_ago(snapshot.last_failure_at, resolved_now),
        )
    return MetricsSnapshot(
        timestamp=resolved_now,
        mode=guard.mode.value,
        native_timeout=guard.native_timeout_supported,
        consecutive_failures=guard.consecutive_failures,
        last_success_ago=seconds_ago(guard.last_successful_update, resolved_now),
        circuit_breakers=breakers,
    )
