"""Application factory for the demo FastAPI service.

Centralizes app construction (middleware, handlers, limiters, routers) so
tests can build an app around an in-process counter instead of a real
remote store.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from tiered_ratelimit import __version__
from tiered_ratelimit.adapters.rate_limit.base import AbstractRemoteCounter
from tiered_ratelimit.api.routes import build_ping_router, echo, health_router
from tiered_ratelimit.core.config import RateLimitOptions, settings
from tiered_ratelimit.core.exception_handlers import setup_exception_handlers
from tiered_ratelimit.core.logging import configure_logging
from tiered_ratelimit.core.middleware import request_id_middleware
from tiered_ratelimit.core.rate_limit import RateLimitDependency, api_key_or_ip, with_rate_limit


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    # Limiters may share a counter; close each one once
    closed: set[int] = set()
    for engine in app.state.limiters.values():
        if id(engine.counter) not in closed:
            closed.add(id(engine.counter))
            await engine.aclose()


def create_app(
    *,
    counter: AbstractRemoteCounter | None = None,
    options: RateLimitOptions | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        counter: Remote counter shared by the demo limiters; built from
            settings when omitted.
        options: Rate limit options; derived from ``APP_RATE_LIMIT_*`` when omitted.

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If rate limiting is enabled but the backend
            is not configured.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Tiered Rate Limit Demo",
        description=(
            "Demo service for a two-tier rate limiter: a local LRU cache in "
            "front of a shared sliding-window counter (Upstash or Vercel KV)."
        ),
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.limiters = {}

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    limiter: RateLimitDependency | None = None
    if settings.app.rate_limit_enabled:
        route_options = options or settings.app.rate_limit_options()
        limiter = RateLimitDependency(api_key_or_ip, route_options, counter=counter)
        # Reuse the counter so both routes share one connection pool
        rate_limited_echo = with_rate_limit(
            echo, api_key_or_ip, route_options, counter=limiter.engine.counter
        )
        app.state.limiters["/v1/ping"] = limiter.engine
        app.state.limiters["/v1/echo"] = rate_limited_echo.engine
        app.add_route("/v1/echo", rate_limited_echo, methods=["GET"])
    else:
        app.add_route("/v1/echo", echo, methods=["GET"])

    app.include_router(build_ping_router(limiter), prefix="/v1")
    app.include_router(health_router)

    return app
