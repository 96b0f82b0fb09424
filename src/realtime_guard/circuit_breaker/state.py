"""Circuit breaker state primitives."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class HealthStatus(StrEnum):
    """Health classification shared by breakers and the update guard."""

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


@dataclass(slots=True)
class BreakerStats:
    """Mutable request counters owned by one breaker.

    Attributes:
        total_requests: Every call made through the breaker, rejected ones
            included.
        successful_requests: Calls that completed successfully.
        failed_requests: Calls that raised or timed out.
        timeouts: Subset of ``failed_requests`` caused by the breaker timeout.
        circuit_open_count: Number of transitions into ``OPEN``.
        average_response_time: Incremental mean in seconds over
            ``total_requests``.
        last_success_at: Timestamp of the last success, if any.
        last_failure_at: Timestamp of the last failure, if any.
    """

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    timeouts: int = 0
    circuit_open_count: int = 0
    average_response_time: float = 0.0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None

    @property
    def health_success_rate(self) -> float:
        """Success percentage used for health, ``100.0`` before any request."""
        if self.total_requests == 0:
            return 100.0
        return self.successful_requests * 100 / self.total_requests

    def record_response_time(self, elapsed: float) -> None:
        if self.total_requests == 0:
            return
        self.average_response_time = (
            self.average_response_time * (self.total_requests - 1) + elapsed
        ) / self.total_requests


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging."""

    name: str
    state: CircuitState
    failure_count: int
    health_status: HealthStatus
    total_requests: int
    successful_requests: int
    failed_requests: int
    timeouts: int
    circuit_open_count: int
    average_response_time: float
    last_success_at: datetime | None
    last_failure_at: datetime | None

    def to_dict(self) -> dict[str, object]:
        """Render the snapshot as a JSON-friendly mapping."""
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "timeouts": self.timeouts,
            "circuit_open_count": self.circuit_open_count,
            "average_response_time": self.average_response_time,
            "last_success_time": _isoformat(self.last_success_at),
            "last_failure_time": _isoformat(self.last_failure_at),
            "state": self.state.value,
            "failure_count": self.failure_count,
            "health_status": self.health_status.value,
        }


def _isoformat(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()
