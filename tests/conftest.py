"""Pytest configuration and fixtures shared across all test modules.

This file is loaded by pytest before any test module, so the environment is
prepared before ``tiered_ratelimit.core.config`` builds its settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

# Fake backend credentials; tests never let the REST client reach the network
os.environ["UPSTASH_URL"] = "https://test-db.upstash.io"
os.environ["UPSTASH_TOKEN"] = "test-upstash-token"
os.environ["KV_REST_API_URL"] = "https://test-kv.vercel-storage.com"
os.environ["KV_REST_API_TOKEN"] = "test-kv-token"

from collections import deque  # noqa: E402

import pytest  # noqa: E402

from tiered_ratelimit.adapters.rate_limit.base import (  # noqa: E402
    AbstractRemoteCounter,
    RateLimitResult,
)


class FakeClock:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class ScriptedCounter(AbstractRemoteCounter):
    """Remote counter replaying queued replies and recording calls.

    Each queued item is either a RateLimitResult or an exception to raise.
    When the queue is empty, ``default`` is returned.
    """

    def __init__(self, default: RateLimitResult | None = None) -> None:
        self.replies: deque = deque()
        self.default = default
        self.calls: list[str] = []
        self.closed = False

    def queue(self, *replies) -> "ScriptedCounter":
        self.replies.extend(replies)
        return self

    async def consume(self, key: str) -> RateLimitResult:
        self.calls.append(key)
        reply = self.replies.popleft() if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if reply is None:
            raise AssertionError("ScriptedCounter has no reply queued")
        return reply

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def counter() -> ScriptedCounter:
    return ScriptedCounter()
