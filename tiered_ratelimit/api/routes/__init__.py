from __future__ import annotations

from tiered_ratelimit.api.routes.health import router as health_router
from tiered_ratelimit.api.routes.ping import build_ping_router, echo

__all__ = ["build_ping_router", "echo", "health_router"]
