"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a request ID so rate limit decisions can
be matched to the request that triggered them in the logs:
- Accepts the incoming request-id header or generates a UUID
- Stores it in contextvars for the lifetime of the request
- Echoes it back on the response, together with the handling duration

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from tiered_ratelimit.core.config import settings
from tiered_ratelimit.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id for the duration of the request.

    Rejections produced by a rate limited handler pass through here like
    any other response, so 400/429/500 answers carry the id as well.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with request-id and duration headers.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or uuid.uuid4().hex
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}"
    )
    return response
