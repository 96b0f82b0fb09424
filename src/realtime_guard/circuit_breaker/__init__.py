"""Async circuit breaker for unreliable realtime feed dependencies.

Key behavior notes:
  - State is held in memory by each ``CircuitBreaker`` instance and is lost on
    restart.
  - ``OPEN`` admits a single ``HALF_OPEN`` probe once ``reset_timeout`` has
    elapsed since the last failure. Concurrent calls during the probe are
    rejected.
  - Every admitted call is raced against ``timeout``. A call that loses the
    race is cancelled unless ``cancel_on_timeout`` is disabled.
"""

from realtime_guard.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
)
from realtime_guard.circuit_breaker.exceptions import (
    CircuitBreakerError,
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

__all__ = [
    "BreakerListener",
    "BreakerSnapshot",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "HealthStatus",
    "OperationTimeoutError",
]
