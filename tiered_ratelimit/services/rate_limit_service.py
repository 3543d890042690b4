"""Two-tier rate limit decision engine.

Decides whether a request for a given key may proceed, consulting a local
LRU/TTL cache first and the shared remote counter only when the cache has
nothing trustworthy. It handles:
- Local allowance and local rejection from cached state
- Remote fallback on cache miss, expiry, or when the cache is disabled
- Cache population from remote replies, bounded by the window's reset time
- Conversion of remote failures into an ERROR outcome

Remaining-count bookkeeping: after a successful remote consume the engine
caches ``remaining - 1``. The remote store has already counted this request,
so the local budget ends up one unit smaller than the remote one. This
conservative accounting is kept on purpose.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from tiered_ratelimit.adapters.rate_limit.base import AbstractRemoteCounter, RateLimitResult
from tiered_ratelimit.core.config import RateLimitOptions
from tiered_ratelimit.core.errors import RemoteStoreAppError
from tiered_ratelimit.utils.ttl_cache import LRUTTLCache

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    ALLOW = "allow"
    REJECT = "reject"
    ERROR = "error"


@dataclass(frozen=True)
class RateLimitState:
    """Cached snapshot of a key's budget.

    Attributes:
        remaining: Units left in the current window (never negative).
        reset_at: UNIX epoch seconds when the window closes.
    """

    remaining: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate limit check.

    Attributes:
        outcome: ALLOW, REJECT or ERROR.
        limit: Configured ceiling per window.
        remaining: Units left after this decision (0 when unknown).
        reset_at: Window close time, or None when the remote store failed.
        source: "cache" when decided locally, "remote" otherwise.
        error: The remote failure behind an ERROR outcome.
    """

    outcome: Outcome
    limit: int
    remaining: int = 0
    reset_at: float | None = None
    source: str = "remote"
    error: Exception | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    def retry_after(self, now: float) -> int:
        """Seconds until the window resets, rounded up."""
        if self.reset_at is None:
            return 0
        return max(0, math.ceil(self.reset_at - now))


def hash_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing identifiers."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def default_error_message(requests_limit: int, timeframe: float) -> str:
    """Build the stock 429 message for a limit of ``requests_limit`` per ``timeframe`` seconds."""
    minutes = timeframe / 60
    if minutes.is_integer():
        minutes = int(minutes)
    return (
        f"Too Many Requests. The limit is {requests_limit} requests "
        f"per {minutes} minutes."
    )


class RateLimitEngine:
    """Orchestrates cache lookup, remote fallback and the allow/deny decision.

    One engine is built per protected route and lives as long as the process.
    """

    def __init__(
        self,
        options: RateLimitOptions,
        counter: AbstractRemoteCounter,
        *,
        cache: LRUTTLCache[RateLimitState] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            options: Validated route options.
            counter: Remote counter used on cache miss.
            cache: Local cache; built from ``options.cache_max_entries`` if omitted.
            clock: Time source returning UNIX time in seconds.
        """
        self.options = options
        self.counter = counter
        self._clock = clock
        self._pending: set[asyncio.Future] = set()
        self.cache: LRUTTLCache[RateLimitState] | None = None
        if not options.cache_disabled:
            if cache is None:
                cache = LRUTTLCache(options.cache_max_entries, clock=clock)
            self.cache = cache

    @property
    def error_message(self) -> str:
        return self.options.error_message or default_error_message(
            self.options.requests_limit, self.options.timeframe
        )

    def now(self) -> float:
        return self._clock()

    def _store(self, key: str, remaining: int, reset_at: float) -> None:
        if self.cache is None:
            return
        ttl = reset_at - self._clock()
        self.cache.set(key, RateLimitState(remaining=max(0, remaining), reset_at=reset_at), ttl)

    def _check_cache(self, key: str) -> RateLimitDecision | None:
        if self.cache is None:
            return None

        state = self.cache.get(key)
        if state is None or state.reset_at <= self._clock():
            return None

        if state.remaining > 0:
            self._store(key, state.remaining - 1, state.reset_at)
            return RateLimitDecision(
                outcome=Outcome.ALLOW,
                limit=self.options.requests_limit,
                remaining=state.remaining - 1,
                reset_at=state.reset_at,
                source="cache",
            )

        return RateLimitDecision(
            outcome=Outcome.REJECT,
            limit=self.options.requests_limit,
            remaining=0,
            reset_at=state.reset_at,
            source="cache",
        )

    def _finish_orphaned(self, key: str, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "rate_limit.remote_error_after_cancel",
                extra={"key_hash": hash_key(key), "error_type": type(exc).__name__},
            )

    async def _consume_remote(self, key: str) -> RateLimitResult:
        # Shielded so a cancelled caller does not abort the counter update
        task = asyncio.ensure_future(self.counter.consume(key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(functools.partial(self._finish_orphaned, key))
            raise

    async def decide(self, key: str) -> RateLimitDecision:
        """Produce ALLOW, REJECT or ERROR for one request on ``key``.

        Args:
            key: Non-empty rate limit key.

        Returns:
            RateLimitDecision: The decision and the budget it was based on.
        """
        cached = self._check_cache(key)
        if cached is not None:
            return cached

        try:
            result = await self._consume_remote(key)
        except RemoteStoreAppError as exc:
            logger.error(
                "rate_limit.remote_error",
                extra={"key_hash": hash_key(key), "error_code": exc.code, "error_message": exc.message},
            )
            return RateLimitDecision(
                outcome=Outcome.ERROR,
                limit=self.options.requests_limit,
                error=exc,
            )
        except Exception as exc:
            logger.exception(
                "rate_limit.remote_error",
                extra={"key_hash": hash_key(key), "error_type": type(exc).__name__},
            )
            return RateLimitDecision(
                outcome=Outcome.ERROR,
                limit=self.options.requests_limit,
                error=exc,
            )

        if not result.success:
            self._store(key, result.remaining, result.reset_at)
            return RateLimitDecision(
                outcome=Outcome.REJECT,
                limit=result.limit,
                remaining=max(0, result.remaining),
                reset_at=result.reset_at,
            )

        remaining = max(0, result.remaining - 1)
        self._store(key, remaining, result.reset_at)
        return RateLimitDecision(
            outcome=Outcome.ALLOW,
            limit=result.limit,
            remaining=remaining,
            reset_at=result.reset_at,
        )

    async def aclose(self) -> None:
        """Wait for in-flight remote calls, then close the counter."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.counter.aclose()
