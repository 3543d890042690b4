"""Remote counter adapters.

The decision engine talks to the shared store through ``AbstractRemoteCounter``
so the backend (Upstash, Vercel KV, in-process) can change without touching
the HTTP layer.
"""

from tiered_ratelimit.adapters.rate_limit.base import (
    AbstractRemoteCounter,
    RateLimitResult,
    RemoteCredentials,
)
from tiered_ratelimit.adapters.rate_limit.factory import create_remote_counter, load_credentials
from tiered_ratelimit.adapters.rate_limit.in_memory import InMemorySlidingWindowCounter
from tiered_ratelimit.adapters.rate_limit.upstash import UpstashRestCounter

__all__ = [
    "AbstractRemoteCounter",
    "InMemorySlidingWindowCounter",
    "RateLimitResult",
    "RemoteCredentials",
    "UpstashRestCounter",
    "create_remote_counter",
    "load_credentials",
]
