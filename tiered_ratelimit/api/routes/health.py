from __future__ import annotations

from fastapi import APIRouter, Request

from tiered_ratelimit.schemas.status import HealthResponse, LimiterStats

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Never rate limited. Reports local cache metrics for every limiter the
    app registered in ``app.state.limiters`` without touching the remote
    store.
    """

    limiters = getattr(request.app.state, "limiters", {})
    stats = [
        LimiterStats(
            route=route,
            provider=engine.options.provider.value,
            counter=type(engine.counter).__name__,
            cache_disabled=engine.cache is None,
            cache=engine.cache.stats() if engine.cache is not None else {},
        )
        for route, engine in limiters.items()
    ]
    return HealthResponse(status="ok", limiters=stats)
