"""Sliding-window counter backed by an Upstash-compatible Redis REST API.

Both Upstash Redis and Vercel KV expose the same REST protocol: a JSON array
holding a Redis command is POSTed to the base URL with a bearer token, and the
reply is ``{"result": ...}`` or ``{"error": "..."}``.

The window is approximated with two fixed buckets: the count in the previous
bucket is weighted by how much of it still overlaps the sliding window. The
check-and-increment runs as a single Lua script so it is atomic per key.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable

import httpx

from tiered_ratelimit.adapters.rate_limit.base import (
    AbstractRemoteCounter,
    RateLimitResult,
    RemoteCredentials,
)
from tiered_ratelimit.core.errors import RemoteStoreAppError

logger = logging.getLogger(__name__)


SLIDING_WINDOW_SCRIPT = """
local current_key = KEYS[1]
local previous_key = KEYS[2]
local limit = tonumber(ARGV[1])
local now = tonumber(ARGV[2])
local window = tonumber(ARGV[3])
local increment = tonumber(ARGV[4])

local current = tonumber(redis.call("GET", current_key) or "0")
local previous = tonumber(redis.call("GET", previous_key) or "0")

local elapsed = (now % window) / window
previous = math.floor((1 - elapsed) * previous)

if previous + current >= limit then
  return -1
end

local updated = redis.call("INCRBY", current_key, increment)
if updated == increment then
  redis.call("PEXPIRE", current_key, window * 2 + 1000)
end
return limit - (updated + previous)
""".strip()


class UpstashRestCounter(AbstractRemoteCounter):
    """Remote counter talking to Upstash (or Vercel KV) over HTTPS.

    Uses a shared ``httpx.AsyncClient`` so connections are pooled across
    requests.
    """

    def __init__(
        self,
        credentials: RemoteCredentials,
        *,
        requests_limit: int,
        timeframe: float,
        prefix: str = "ratelimit",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the REST counter.

        Args:
            credentials: REST URL and bearer token.
            requests_limit: Maximum requests per window.
            timeframe: Window length in seconds.
            prefix: Namespace prepended to every Redis key.
            timeout_seconds: Per-request timeout for the REST call.
            transport: Optional httpx transport (used to stub the network in tests).
            clock: Time source returning UNIX time in seconds.
        """
        if requests_limit < 1:
            raise ValueError("requests_limit must be >= 1")
        if timeframe <= 0:
            raise ValueError("timeframe must be > 0")

        self._limit = requests_limit
        self._window_ms = max(1, int(timeframe * 1000))
        self._prefix = prefix
        self._clock = clock
        self.client = httpx.AsyncClient(
            base_url=credentials.url.rstrip("/"),
            headers={"Authorization": f"Bearer {credentials.token}"},
            timeout=timeout_seconds,
            transport=transport,
        )

    def _bucket_keys(self, key: str, bucket: int) -> tuple[str, str]:
        return (
            f"{self._prefix}:{key}:{bucket}",
            f"{self._prefix}:{key}:{bucket - 1}",
        )

    async def _eval(self, keys: list[str], args: list[Any]) -> Any:
        command: list[Any] = ["EVAL", SLIDING_WINDOW_SCRIPT, len(keys), *keys, *args]

        try:
            response = await self.client.post("/", json=command)
        except httpx.HTTPError as exc:
            raise RemoteStoreAppError(
                code="remote_store_unreachable",
                message=f"Remote counter request failed: {type(exc).__name__}",
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteStoreAppError(
                code="remote_store_bad_response",
                message="Remote counter returned a non-JSON body",
                details={"http_status": response.status_code},
            ) from exc

        if response.is_error or not isinstance(payload, dict) or "error" in payload:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise RemoteStoreAppError(
                code="remote_store_error",
                message=f"Remote counter rejected the command: {error or 'unknown error'}",
                details={"http_status": response.status_code},
            )

        if "result" not in payload:
            raise RemoteStoreAppError(
                code="remote_store_bad_response",
                message="Remote counter reply has no result",
                details={"http_status": response.status_code},
            )
        return payload["result"]

    async def consume(self, key: str) -> RateLimitResult:
        """Atomically check and consume one unit for ``key``.

        Args:
            key: Rate limit key.

        Returns:
            RateLimitResult with remaining units after this call.

        Raises:
            RemoteStoreAppError: On transport failure or unusable reply.
        """
        now_ms = int(self._clock() * 1000)
        bucket = now_ms // self._window_ms
        keys = list(self._bucket_keys(key, bucket))

        result = await self._eval(keys, [self._limit, now_ms, self._window_ms, 1])

        try:
            remaining = int(result)
        except (TypeError, ValueError) as exc:
            raise RemoteStoreAppError(
                code="remote_store_bad_response",
                message="Remote counter returned a non-integer result",
            ) from exc

        reset_at = (bucket + 1) * self._window_ms / 1000
        success = remaining >= 0

        logger.debug(
            "remote_counter.consumed",
            extra={
                "success": success,
                "remaining": max(0, remaining),
                "reset_in_s": math.ceil(reset_at - now_ms / 1000),
            },
        )

        return RateLimitResult(
            success=success,
            limit=self._limit,
            remaining=max(0, remaining),
            reset_at=reset_at,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
