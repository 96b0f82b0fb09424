from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from realtime_guard.errors import (
    FeedFormatError,
    FeedHttpError,
    FeedNetworkError,
    FeedTimeoutError,
)
from realtime_guard.settings import RealtimeFeedSettings


@dataclass(frozen=True)
class RealtimeFeed:
    """One realtime endpoint of the feed provider."""

    name: str
    url: str
    timeout: float | None = None


def feeds_from_settings(settings: RealtimeFeedSettings) -> tuple[RealtimeFeed, ...]:
    """Build the configured feed list, skipping endpoints without a URL."""
    candidates = (
        ("alerts", settings.alerts_url, settings.alerts_timeout),
        ("trip_updates", settings.trip_updates_url, settings.trip_updates_timeout),
        (
            "vehicle_positions",
            settings.vehicle_positions_url,
            settings.vehicle_positions_timeout,
        ),
    )
    return tuple(
        RealtimeFeed(name=name, url=url, timeout=timeout)
        for name, url, timeout in candidates
        if url
    )


class RealtimeFeedClient:
    """Download raw realtime payloads with a per-request timeout.

    The payload bytes are returned untouched. Failures are raised as tagged
    ``FeedError`` subclasses so callers can decide what is worth retrying.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        feeds: Sequence[RealtimeFeed],
        download_timeout: float = 30.0,
    ) -> None:
        """Create a feed client.

        Args:
            client: Shared HTTP client.
            feeds: Endpoints fetched by ``update_realtime``.
            download_timeout: Timeout in seconds for feeds without their own.

        Raises:
            ValueError: If no feeds are given or the timeout is not positive.
        """
        resolved_feeds = tuple(feeds)
        if not resolved_feeds:
            raise ValueError("At least one realtime feed is required.")
        if download_timeout <= 0:
            raise ValueError("download_timeout must be > 0")
        self._client = client
        self._feeds = resolved_feeds
        self.download_timeout = download_timeout

    @classmethod
    def from_settings(
        cls,
        *,
        client: httpx.AsyncClient,
        settings: RealtimeFeedSettings,
    ) -> RealtimeFeedClient:
        return cls(
            client=client,
            feeds=feeds_from_settings(settings),
            download_timeout=settings.download_timeout,
        )

    @property
    def feeds(self) -> tuple[RealtimeFeed, ...]:
        return self._feeds

    async def fetch(self, feed: RealtimeFeed) -> bytes:
        """Fetch one feed and return its raw payload."""
        timeout = self.download_timeout if feed.timeout is None else feed.timeout
        try:
            response = await self._client.get(feed.url, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise FeedTimeoutError(
                f"Timeout after {timeout:g}s fetching {feed.name}", feed=feed.name
            ) from exc
        except httpx.TransportError as exc:
            raise FeedNetworkError(
                f"fetch failed for {feed.name}: {exc}", feed=feed.name
            ) from exc

        if response.status_code >= 500:
            raise FeedNetworkError(
                f"{feed.name} provider unavailable (HTTP {response.status_code}).",
                feed=feed.name,
            )
        if response.status_code >= 400:
            raise FeedHttpError(
                f"{feed.name} returned HTTP {response.status_code}.",
                status_code=response.status_code,
                feed=feed.name,
            )
        if not response.content:
            raise FeedFormatError(
                f"{feed.name} returned an empty payload.", feed=feed.name
            )
        return response.content

    async def update_realtime(self) -> dict[str, bytes]:
        """Fetch every configured feed, failing on the first broken one."""
        payloads: dict[str, bytes] = {}
        for feed in self._feeds:
            payloads[feed.name] = await self.fetch(feed)
        return payloads
