"""Rate limited demo routes.

``/v1/ping`` is guarded by ``RateLimitDependency``; ``/v1/echo`` is a plain
Starlette handler wrapped with ``with_rate_limit``. Both key requests by
X-API-Key, falling back to the client IP.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from tiered_ratelimit.core.logging import get_request_id
from tiered_ratelimit.core.rate_limit import RateLimitDependency
from tiered_ratelimit.schemas.status import PingResponse


def build_ping_router(limiter: RateLimitDependency | None) -> APIRouter:
    """Build the ping router, guarded by ``limiter`` when one is given.

    Args:
        limiter: Dependency enforcing the rate limit, or None to leave it open.

    Returns:
        APIRouter exposing ``GET /ping``.
    """

    dependencies = [Depends(limiter)] if limiter is not None else []
    router = APIRouter(tags=["Demo"], dependencies=dependencies)

    @router.get("/ping", response_model=PingResponse)
    async def ping() -> PingResponse:
        return PingResponse(message="pong", request_id=get_request_id())

    return router


async def echo(request: Request) -> JSONResponse:
    """Echo the query parameters back to the caller."""

    return JSONResponse(
        {
            "query": dict(request.query_params),
            "request_id": get_request_id(),
        }
    )
