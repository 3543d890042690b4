"""Remote counter interfaces.

The decision engine depends on this abstraction (not a concrete backend) so
the shared store can be swapped (Upstash, Vercel KV, in-process) without
touching the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RemoteCredentials:
    """Connection credentials for a REST-based counter store.

    Attributes:
        url: Base URL of the REST endpoint.
        token: Bearer token used to authenticate.
    """

    url: str
    token: str

    def __repr__(self) -> str:
        return f"RemoteCredentials(url={self.url!r}, token='***')"


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a single consume operation against the remote store.

    Attributes:
        success: Whether the request fits in the current window.
        limit: Max requests per window.
        remaining: Units left after this call's accounting (0 when blocked).
        reset_at: UNIX epoch seconds when the current window closes.
    """

    success: bool
    limit: int
    remaining: int
    reset_at: float


class AbstractRemoteCounter(ABC):
    """Interface for shared sliding-window counters."""

    @abstractmethod
    async def consume(self, key: str) -> RateLimitResult:
        """Consume one unit of budget for a given key.

        Args:
            key: Unique identifier (e.g., API key, IP address).

        Returns:
            RateLimitResult describing whether it was allowed.

        Raises:
            RemoteStoreAppError: If the store cannot be reached or replies
                with something unusable.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources held by the counter."""
        return None
