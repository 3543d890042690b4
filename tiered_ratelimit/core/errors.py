"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    error to carry every field.
    """

    code: str
    message: str
    hint: str
    provider: str
    field: str
    http_status: int
    limit: int
    remaining: int
    reset_at: float
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when rate limit options or backend credentials are invalid.

    Always raised while wiring a limiter, never while serving a request.
    """


class KeyIndeterminateAppError(AppError):
    """Raised when no rate limit key can be derived from a request."""


class RateLimitExceededAppError(AppError):
    """Raised when the requester has no budget left in the current window."""


class RemoteStoreAppError(AppError):
    """Raised when the remote counter store cannot be reached or misbehaves."""
