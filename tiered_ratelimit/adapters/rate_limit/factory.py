"""Factory for remote counter instances."""

from __future__ import annotations

from tiered_ratelimit.adapters.rate_limit.base import AbstractRemoteCounter, RemoteCredentials
from tiered_ratelimit.adapters.rate_limit.upstash import UpstashRestCounter
from tiered_ratelimit.core.config import RateLimitOptions, RemoteProvider, settings
from tiered_ratelimit.core.errors import ConfigurationAppError

_ENV_HINTS = {
    RemoteProvider.UPSTASH: "UPSTASH_URL and UPSTASH_TOKEN",
    RemoteProvider.VERCEL_KV: "KV_REST_API_URL and KV_REST_API_TOKEN",
}


def load_credentials(provider: RemoteProvider) -> RemoteCredentials:
    """Read backend credentials from the settings layer.

    Args:
        provider: Backend whose credentials are needed.

    Returns:
        RemoteCredentials: URL and token for the backend.

    Raises:
        ConfigurationAppError: If either value is missing.
    """
    if provider is RemoteProvider.UPSTASH:
        url, token = settings.upstash.url, settings.upstash.token
    elif provider is RemoteProvider.VERCEL_KV:
        url, token = settings.vercel_kv.url, settings.vercel_kv.token
    else:  # pragma: no cover - enum is exhaustive
        raise ConfigurationAppError(
            code="unknown_provider",
            message=f"Unknown remote provider: '{provider}'",
        )

    if not url or not token:
        raise ConfigurationAppError(
            code="missing_credentials",
            message=f"Missing {provider.value} credentials",
            details={
                "provider": provider.value,
                "hint": f"Set {_ENV_HINTS[provider]} environment variables",
            },
        )
    return RemoteCredentials(url=url, token=token)


def create_remote_counter(
    options: RateLimitOptions,
    credentials: RemoteCredentials | None = None,
) -> AbstractRemoteCounter:
    """Instantiate the remote counter selected by ``options.provider``.

    Upstash and Vercel KV share the same REST protocol, so both resolve to
    ``UpstashRestCounter``; only the credentials differ.

    Args:
        options: Validated route options.
        credentials: Explicit credentials; loaded from settings when omitted.

    Returns:
        AbstractRemoteCounter: Configured counter instance.

    Raises:
        ConfigurationAppError: If credentials are missing or incomplete.
    """
    if credentials is None:
        credentials = load_credentials(options.provider)
    elif not credentials.url or not credentials.token:
        raise ConfigurationAppError(
            code="missing_credentials",
            message=f"Incomplete {options.provider.value} credentials",
            details={"provider": options.provider.value},
        )

    return UpstashRestCounter(
        credentials,
        requests_limit=options.requests_limit,
        timeframe=options.timeframe,
        prefix=options.prefix,
        timeout_seconds=settings.app.remote_timeout_seconds,
    )
