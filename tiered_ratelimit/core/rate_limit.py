"""Rate limiting for Starlette/FastAPI request handlers.

This module bridges the decision engine to the HTTP layer. Two surfaces share
the same engine semantics:

- ``with_rate_limit``: wraps a request handler and returns a new handler that
  answers 400/429/500 itself and forwards allowed requests untouched.
- ``RateLimitDependency``: a FastAPI dependency raising domain errors that the
  global exception handlers render with the same status codes and bodies.

Both resolve configuration and the remote backend when they are built, so a
misconfigured limiter fails at startup rather than on the first request.
"""

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Union

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from tiered_ratelimit.adapters.rate_limit.base import AbstractRemoteCounter, RemoteCredentials
from tiered_ratelimit.adapters.rate_limit.factory import create_remote_counter
from tiered_ratelimit.core.config import RateLimitOptions, parse_rate_limit_options
from tiered_ratelimit.core.errors import (
    KeyIndeterminateAppError,
    RateLimitExceededAppError,
    RemoteStoreAppError,
)
from tiered_ratelimit.services.rate_limit_service import (
    Outcome,
    RateLimitDecision,
    RateLimitEngine,
    hash_key,
)

logger = logging.getLogger(__name__)


KeyExtractor = Callable[[Request], Union[str, None, Awaitable[Union[str, None]]]]
Handler = Callable[[Request], Union[Response, Awaitable[Response]]]

KEY_INDETERMINATE_MESSAGE = "Unable to determine rate limit key"
INTERNAL_ERROR_MESSAGE = "Internal Server Error"


def client_ip_key(request: Request) -> str:
    """Key requests by client IP, honouring the first X-Forwarded-For hop."""

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return ""


def api_key_or_ip(request: Request) -> str:
    """Key requests by X-API-Key, falling back to the client IP."""

    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"api_key:{api_key}"
    return client_ip_key(request)


def build_engine(
    options: RateLimitOptions | Mapping[str, Any] | None = None,
    *,
    counter: AbstractRemoteCounter | None = None,
    credentials: RemoteCredentials | None = None,
) -> RateLimitEngine:
    """Validate options and assemble an engine with its remote counter.

    Args:
        options: Route options (validated here).
        counter: Pre-built counter; created from ``options.provider`` if omitted.
        credentials: Explicit backend credentials, used only when ``counter`` is omitted.

    Returns:
        RateLimitEngine: Engine owning a fresh local cache.

    Raises:
        ConfigurationAppError: If options or credentials are invalid.
    """

    resolved = parse_rate_limit_options(options)
    if counter is None:
        counter = create_remote_counter(resolved, credentials)

    logger.info(
        "rate_limit.configured",
        extra={
            "provider": resolved.provider.value,
            "limit": resolved.requests_limit,
            "window_s": resolved.timeframe,
            "cache_disabled": resolved.cache_disabled,
            "counter": type(counter).__name__,
        },
    )
    return RateLimitEngine(resolved, counter)


async def _resolve_key(get_key: KeyExtractor, request: Request) -> str:
    key = get_key(request)
    if inspect.isawaitable(key):
        key = await key
    return key or ""


def _rate_limit_headers(engine: RateLimitEngine, decision: RateLimitDecision) -> dict[str, str]:
    if not engine.options.include_headers:
        return {}

    now = engine.now()
    headers = {
        "Retry-After": str(decision.retry_after(now)),
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if decision.reset_at is not None:
        headers["X-RateLimit-Reset"] = str(int(decision.reset_at))
    return headers


def _log_decision(key: str, decision: RateLimitDecision, engine: RateLimitEngine) -> None:
    extra = {
        "key_hash": hash_key(key),
        "limit": decision.limit,
        "remaining": decision.remaining,
        "source": decision.source,
        "window_s": engine.options.timeframe,
    }
    if decision.outcome is Outcome.ALLOW:
        logger.info("rate_limit.allowed", extra=extra)
    elif decision.outcome is Outcome.REJECT:
        logger.warning(
            "rate_limit.exceeded",
            extra={**extra, "retry_after_s": decision.retry_after(engine.now())},
        )


def with_rate_limit(
    handler: Handler,
    get_key: KeyExtractor,
    options: RateLimitOptions | Mapping[str, Any] | None = None,
    *,
    counter: AbstractRemoteCounter | None = None,
    credentials: RemoteCredentials | None = None,
) -> Callable[[Request], Awaitable[Response]]:
    """Wrap ``handler`` so every call is rate limited.

    Usage:
        app.add_route("/v1/items", with_rate_limit(list_items, client_ip_key))

    Args:
        handler: Request handler invoked unchanged on ALLOW (sync or async).
        get_key: Returns the rate limit key for a request (sync or async).
            An empty key means the request cannot be rate limited.
        options: Route options.
        counter: Pre-built remote counter (skips provider resolution).
        credentials: Explicit backend credentials.

    Returns:
        An async handler answering 400/429/500 itself or delegating to ``handler``.

    Raises:
        ConfigurationAppError: At wrap time, if options or credentials are invalid.
    """

    engine = build_engine(options, counter=counter, credentials=credentials)

    @functools.wraps(handler)
    async def rate_limited(request: Request) -> Response:
        key = await _resolve_key(get_key, request)
        if not key:
            logger.warning("rate_limit.key_indeterminate", extra={"request_path": request.url.path})
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": KEY_INDETERMINATE_MESSAGE},
            )

        decision = await engine.decide(key)
        _log_decision(key, decision, engine)

        if decision.outcome is Outcome.ERROR:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": INTERNAL_ERROR_MESSAGE},
            )

        if decision.outcome is Outcome.REJECT:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": engine.error_message},
                headers=_rate_limit_headers(engine, decision) or None,
            )

        if inspect.iscoroutinefunction(handler):
            return await handler(request)
        response = await run_in_threadpool(handler, request)
        if inspect.isawaitable(response):
            response = await response
        return response

    rate_limited.engine = engine  # type: ignore[attr-defined]
    return rate_limited


class RateLimitDependency:
    """FastAPI dependency enforcing a rate limit on a route.

    Usage:
        limiter = RateLimitDependency(api_key_or_ip, {"requests_limit": 10})

        @router.get("/items", dependencies=[Depends(limiter)])
        async def list_items(): ...

    Raises domain errors instead of building responses; register
    ``setup_exception_handlers`` on the app to render them.
    """

    def __init__(
        self,
        get_key: KeyExtractor = api_key_or_ip,
        options: RateLimitOptions | Mapping[str, Any] | None = None,
        *,
        counter: AbstractRemoteCounter | None = None,
        credentials: RemoteCredentials | None = None,
    ) -> None:
        self.get_key = get_key
        self.engine = build_engine(options, counter=counter, credentials=credentials)

    async def __call__(self, request: Request) -> None:
        """Consume one unit for the request's key.

        Raises:
            KeyIndeterminateAppError: No key could be derived (400).
            RateLimitExceededAppError: Budget exhausted (429).
            RemoteStoreAppError: Remote store failure (500).
        """

        key = await _resolve_key(self.get_key, request)
        if not key:
            logger.warning("rate_limit.key_indeterminate", extra={"request_path": request.url.path})
            raise KeyIndeterminateAppError(
                code="rate_limit_key_indeterminate",
                message=KEY_INDETERMINATE_MESSAGE,
            )

        decision = await self.engine.decide(key)
        _log_decision(key, decision, self.engine)

        if decision.outcome is Outcome.ERROR:
            raise RemoteStoreAppError(
                code="remote_store_error",
                message=INTERNAL_ERROR_MESSAGE,
            )

        if decision.outcome is Outcome.REJECT:
            raise RateLimitExceededAppError(
                code="rate_limit_exceeded",
                message=self.engine.error_message,
                details={
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "retry_after": decision.retry_after(self.engine.now()),
                    "context": {"headers": _rate_limit_headers(self.engine, decision)},
                },
            )
