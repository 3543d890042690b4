"""In-process sliding-window counter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Intended for local development and tests where no shared store exists.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable

from tiered_ratelimit.adapters.rate_limit.base import AbstractRemoteCounter, RateLimitResult


class InMemorySlidingWindowCounter(AbstractRemoteCounter):
    """Counter using a true sliding window of request timestamps per key.

    Important:
        This counter is per-process only. If the API runs with multiple
        workers, each worker enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        sweep_threshold: int = 10_000,
    ) -> None:
        """Initialize the in-memory counter.

        Args:
            limit: Maximum number of allowed units per window.
            window_seconds: Length of the sliding window in seconds.
            clock: Time source function returning UNIX time in seconds.
            sweep_threshold: Number of tracked keys that triggers a sweep of
                keys whose window has fully elapsed.

        Raises:
            ValueError: If limit, window_seconds or sweep_threshold are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if sweep_threshold < 1:
            raise ValueError("sweep_threshold must be >= 1")

        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._hits_by_key: dict[str, deque[float]] = {}
        self._sweep_threshold = sweep_threshold
        self._sweep_at = sweep_threshold
        self.calls = 0

    def _prune(self, hits: deque[float], now: float) -> None:
        cutoff = now - self._window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits_by_key):
            hits = self._hits_by_key[key]
            self._prune(hits, now)
            if not hits:
                del self._hits_by_key[key]
        # Next sweep once the live key count doubles
        self._sweep_at = max(self._sweep_threshold, 2 * len(self._hits_by_key))

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits_by_key)

    async def consume(self, key: str) -> RateLimitResult:
        """Consume one unit for the provided key.

        Args:
            key: Unique identifier for rate limiting.

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()

        with self._lock:
            self.calls += 1
            if key not in self._hits_by_key and len(self._hits_by_key) >= self._sweep_at:
                self._sweep(now)
            hits = self._hits_by_key.setdefault(key, deque())
            self._prune(hits, now)

            if len(hits) < self._limit:
                hits.append(now)
                success = True
            else:
                success = False

            # Window frees its oldest slot once that hit slides out
            reset_at = hits[0] + self._window_seconds
            return RateLimitResult(
                success=success,
                limit=self._limit,
                remaining=max(0, self._limit - len(hits)),
                reset_at=reset_at,
            )
