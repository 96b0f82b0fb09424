from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    @property
    def events(self) -> list[str]:
        return [event for _, event, _ in self.calls]

    def fields_for(self, event: str) -> list[dict[str, object]]:
        return [fields for _, name, fields in self.calls if name == event]


class FakeClock:
    """Controllable UTC clock for modules exposing a ``_utcnow`` hook."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = datetime(2024, 1, 1, tzinfo=UTC) if start is None else start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedOperation:
    """Async operation replaying scripted results and exceptions in order.

    Once the script is exhausted the last entry is repeated.
    """

    def __init__(self, script: Sequence[object]) -> None:
        if not script:
            raise ValueError("script must not be empty")
        self._script = list(script)
        self.calls = 0

    async def __call__(self) -> object:
        index = min(self.calls, len(self._script) - 1)
        self.calls += 1
        outcome = self._script[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome
