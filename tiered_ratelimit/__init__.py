"""Two-tier HTTP rate limiting: local LRU/TTL cache over a shared sliding-window counter."""

__version__ = "0.1.0"

from tiered_ratelimit.core.config import RateLimitOptions, RemoteProvider
from tiered_ratelimit.core.rate_limit import (
    RateLimitDependency,
    api_key_or_ip,
    client_ip_key,
    with_rate_limit,
)

__all__ = [
    "RateLimitDependency",
    "RateLimitOptions",
    "RemoteProvider",
    "__version__",
    "api_key_or_ip",
    "client_ip_key",
    "with_rate_limit",
]
