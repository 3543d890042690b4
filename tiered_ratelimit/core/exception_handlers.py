"""Global exception handlers for consistent error responses.

Rate limit errors keep the flat ``{"error": "<message>"}`` body that callers
of wrapped handlers receive, so a route behaves the same whether it is
protected by ``with_rate_limit`` or by ``RateLimitDependency``.

Design:
- KeyIndeterminateAppError → 400
- RateLimitExceededAppError → 429 (+ Retry-After / X-RateLimit-* headers)
- RemoteStoreAppError → 500 with a generic message
- Other AppError subclasses → structured error with request_id
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from tiered_ratelimit.core.errors import (
    AppError,
    ConfigurationAppError,
    KeyIndeterminateAppError,
    RateLimitExceededAppError,
    RemoteStoreAppError,
)
from tiered_ratelimit.core.logging import get_request_id

logger = logging.getLogger(__name__)


async def rate_limit_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render rate limit errors as ``{"error": message}``.

    Args:
        request: FastAPI request object.
        exc: KeyIndeterminateAppError, RateLimitExceededAppError or RemoteStoreAppError.

    Returns:
        JSONResponse with 400, 429 or 500 status.
    """
    headers: dict[str, str] = {}
    if isinstance(exc, KeyIndeterminateAppError):
        status_code = status.HTTP_400_BAD_REQUEST
        message = exc.message
    elif isinstance(exc, RateLimitExceededAppError):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        message = exc.message
        context = (exc.details or {}).get("context") or {}
        headers = dict(context.get("headers") or {})
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        message = "Internal Server Error"

    logger.info(
        "rate_limit_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "request_path": request.url.path,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=status_code,
        content={"error": message},
        headers=headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle remaining domain errors with a structured JSON body.

    - ConfigurationAppError → 500 (server misconfiguration)
    - anything else → 400

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with error code, message and request_id.
    """
    status_code = 400
    if isinstance(exc, ConfigurationAppError):
        status_code = 500

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure and returns a generic message; no stack traces or
    exception text reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error"},
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Specific handlers are registered before the general fallback.

    Args:
        app: FastAPI application instance.
    """
    for error_type in (KeyIndeterminateAppError, RateLimitExceededAppError, RemoteStoreAppError):
        app.exception_handler(error_type)(rate_limit_error_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
