"""Per-client token bucket rate limiting for the HTTP API."""

from __future__ import annotations

import asyncio
import math
import time
from typing import Callable


class TokenBucket:
    """Simple token bucket that refills continuously.

    Callers never wait: ``try_acquire`` either takes tokens or reports how
    long until enough would be available.
    """

    def __init__(
        self,
        capacity: int,
        refill_rate_per_sec: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = capacity
        self._tokens = float(capacity)
        self._refill_rate = refill_rate_per_sec
        self._clock = clock
        self._last_refill = clock()

    def try_acquire(self, tokens: int = 1) -> bool:
        """Take ``tokens`` if available; return whether it succeeded."""

        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    def retry_after(self, tokens: int = 1) -> float:
        """Seconds until ``tokens`` could be acquired."""

        self._refill()
        missing = tokens - self._tokens
        if missing <= 0:
            return 0.0
        return missing / self._refill_rate

    def _refill(self) -> None:
        """Replenish bucket based on elapsed time."""

        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    @property
    def is_full(self) -> bool:
        self._refill()
        return self._tokens >= self._capacity

    @property
    def tokens(self) -> int:
        """Return current token count (approximate)."""

        self._refill()
        return int(self._tokens)


class ClientRateLimiter:
    """One token bucket per client key, ``limit`` requests per ``window_seconds``."""

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        max_clients: int = 10_000,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._max_clients = max_clients
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    async def check(self, client: str) -> tuple[bool, int]:
        """Consume one request for ``client``; returns (allowed, retry_after_seconds)."""

        async with self._lock:
            bucket = self._buckets.get(client)
            if bucket is None:
                if len(self._buckets) >= self._max_clients:
                    self._prune()
                bucket = TokenBucket(self._limit, self._limit / self._window, clock=self._clock)
                self._buckets[client] = bucket
            if bucket.try_acquire():
                return True, 0
            return False, max(1, math.ceil(bucket.retry_after()))

    def _prune(self) -> None:
        """Drop buckets that have refilled completely."""

        for client in [key for key, bucket in self._buckets.items() if bucket.is_full]:
            del self._buckets[client]


__all__ = ["ClientRateLimiter", "TokenBucket"]
