"""Bounded in-memory cache with per-entry TTL and LRU eviction.

Holds the local tier of rate-limit state. Each entry carries its own
expiration, so an entry lives exactly as long as the window it describes.
Thread-safe: every read and write goes through a single lock, including the
recency bookkeeping performed by ``get``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)


V = TypeVar("V")


@dataclass
class CacheItem(Generic[V]):
    """Container for cached values with expiration metadata."""

    value: V
    expires_at: float


class LRUTTLCache(Generic[V]):
    """Thread-safe, fixed-capacity cache with per-entry TTL.

    Attributes:
        max_entries: Maximum number of cached items.
        clock: Time source returning UNIX time in seconds.
    """

    def __init__(
        self,
        max_entries: int = 500,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheItem[V]] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"LRUTTLCache(max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        # Membership check does not touch recency.
        with self._lock:
            item = self._store.get(key)  # type: ignore[arg-type]
            return item is not None and not self._is_expired(item)

    def get(self, key: str) -> V | None:
        """Retrieve a cached value if it exists and is not expired.

        A successful read marks the entry as most recently used.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found/expired.
        """

        with self._lock:
            item = self._store.get(key)
            if item is None:
                self._misses += 1
                logger.debug(
                    "cache.miss",
                    extra={"cache_key": key[:16], "reason": "not_found"},
                )
                return None

            if self._is_expired(item):
                self._evict_single(key)
                self._misses += 1
                logger.debug(
                    "cache.miss",
                    extra={"cache_key": key[:16], "reason": "expired"},
                )
                return None

            self._hits += 1
            self._store.move_to_end(key)
            logger.debug("cache.hit", extra={"cache_key": key[:16]})
            return item.value

    def set(self, key: str, value: V, ttl: float) -> None:
        """Store a value that expires ``ttl`` seconds from now.

        A non-positive TTL is ignored: the value is already stale.

        Args:
            key: Cache key.
            value: Value to store.
            ttl: Time-to-live in seconds.
        """

        if ttl <= 0:
            logger.debug(
                "cache.set_skipped",
                extra={"cache_key": key[:16], "ttl_s": ttl},
            )
            return

        with self._lock:
            now = self._clock()
            self._evict_expired_locked(now)
            self._store[key] = CacheItem(value=value, expires_at=now + ttl)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

            logger.debug(
                "cache.set",
                extra={
                    "cache_key": key[:16],
                    "size": len(self._store),
                    "ttl_s": round(ttl, 3),
                },
            )

    def delete(self, key: str) -> None:
        """Drop a single entry if present."""

        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_expired_locked(self, now: float) -> None:
        expired_keys = [k for k, item in self._store.items() if item.expires_at <= now]
        for key in expired_keys:
            self._evict_single(key)

    def _evict_if_over_capacity_locked(self) -> None:
        while len(self._store) > self._max_entries:
            # Front of the OrderedDict is the least recently used entry
            key, _ = self._store.popitem(last=False)
            self._evictions += 1
            logger.debug("cache.evicted", extra={"cache_key": key[:16], "reason": "capacity"})

    def _is_expired(self, item: CacheItem[V]) -> bool:
        return self._clock() >= item.expires_at
