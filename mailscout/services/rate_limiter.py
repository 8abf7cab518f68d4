"""Sliding-window request limiter keyed by client identifier."""
from __future__ import annotations

import asyncio
import math
import time
from typing import Callable

from mailscout.config import Settings
from mailscout.errors import RateLimitError
from mailscout.services.cache import CacheStore, InMemoryCacheStore


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per ``window`` seconds per client.

    Request timestamps are kept in the shared ``CacheStore`` so the limiter
    and the response cache can live on the same backend.
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        *,
        max_requests: int = 100,
        window: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window <= 0:
            raise ValueError("window must be > 0")
        self.store = store if store is not None else InMemoryCacheStore()
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, store: CacheStore | None = None) -> "SlidingWindowRateLimiter":
        return cls(
            store,
            max_requests=settings.rate_limit_max_requests,
            window=settings.rate_limit_window_seconds,
        )

    async def check(self, client_id: str) -> None:
        """Record one request, or raise ``RateLimitError`` if over the limit."""
        key = f"ratelimit:{client_id}"
        async with self._lock:
            now = self._clock()
            stamps = await self.store.get(key) or []
            recent = [float(t) for t in stamps if now - float(t) < self.window]
            if len(recent) >= self.max_requests:
                retry_after = max(math.ceil(self.window - (now - recent[0])), 1)
                raise RateLimitError(
                    "Too many requests",
                    {"limit": self.max_requests, "window": self.window},
                    retry_after=retry_after,
                )
            recent.append(now)
            await self.store.set(key, recent, self.window)
