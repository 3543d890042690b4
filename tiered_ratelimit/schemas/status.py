"""Pydantic schemas for the demo service responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PingResponse(BaseModel):
    """Payload returned by rate limited demo routes."""

    message: str = Field("pong", description="Static reply proving the request got through.")
    request_id: str | None = Field(
        None, description="Correlation id of the request, when one was assigned."
    )


class LimiterStats(BaseModel):
    """Local cache metrics for one protected route."""

    route: str = Field(..., description="Path protected by the limiter.")
    provider: str = Field(..., description="Configured remote counter backend.")
    counter: str = Field(..., description="Class of the counter actually in use.")
    cache_disabled: bool = Field(..., description="Whether the local cache is bypassed.")
    cache: dict[str, int] = Field(
        default_factory=dict,
        description="Entries, hits, misses and evictions of the local cache.",
    )


class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str = Field("ok", description="Always 'ok' when the process is serving.")
    limiters: list[LimiterStats] = Field(default_factory=list)
