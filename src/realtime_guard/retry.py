from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.retry import retry_base


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Attempt budget and exponential backoff bounds for one logical update.

    The wait before retry ``n`` (1-based) is
    ``min(initial_seconds * 2 ** (n - 1), max_seconds)``.
    """

    attempts: int
    initial_seconds: float = 2.0
    max_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.initial_seconds < 0:
            raise ValueError("initial_seconds must be >= 0")
        if self.max_seconds < self.initial_seconds:
            raise ValueError("max_seconds must be >= initial_seconds")

    @classmethod
    def from_max_retries(cls, max_retries: int) -> RetryBackoffPolicy:
        """Build a policy allowing ``max_retries`` retries after the first try."""
        return cls(attempts=max_retries + 1)

    @property
    def max_retries(self) -> int:
        return self.attempts - 1


def build_exponential_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with capped exponential backoff."""
    options: dict[str, Any] = {}
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(
        retry=retry,
        wait=wait_exponential(
            multiplier=policy.initial_seconds,
            max=policy.max_seconds,
        ),
        stop=stop_after_attempt(policy.attempts),
        reraise=reraise,
        **options,
    )
