"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Rate limit options for a single protected route live here as well
(``RateLimitOptions``); they are validated once when a route is wrapped.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tiered_ratelimit.core.errors import ConfigurationAppError


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class RemoteProvider(str, Enum):
    """Supported remote counter backends."""

    UPSTASH = "upstash"
    VERCEL_KV = "vercel_kv"


# Provider names as written by JavaScript clients
_PROVIDER_SPELLINGS = {"vercelKV": RemoteProvider.VERCEL_KV.value}


class RateLimitOptions(BaseModel):
    """Per-route rate limit configuration.

    Immutable once built. Accepts both snake_case names and the camelCase
    spellings used by JavaScript clients of the same store.
    """

    timeframe: float = Field(
        60,
        gt=0,
        description="Window length in seconds",
    )
    requests_limit: int = Field(
        5,
        gt=0,
        description="Maximum number of requests per window",
        validation_alias=AliasChoices("requests_limit", "requestsLimit"),
    )
    cache_disabled: bool = Field(
        False,
        description="Skip the local cache and consult the remote store on every request",
        validation_alias=AliasChoices(
            "cache_disabled", "disable_lru", "cacheDisabled", "disableLRU"
        ),
    )
    provider: RemoteProvider = Field(
        RemoteProvider.UPSTASH,
        description="Remote counter backend",
    )
    error_message: str | None = Field(
        None,
        description="Override for the 429 response message",
        validation_alias=AliasChoices("error_message", "errorMessage"),
    )
    cache_max_entries: int = Field(
        500,
        gt=0,
        description="Capacity of the local LRU cache",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    prefix: str = Field(
        "ratelimit",
        min_length=1,
        description="Namespace for keys written to the remote store",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("provider", mode="before")
    @classmethod
    def _accept_camel_case_provider(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _PROVIDER_SPELLINGS.get(value, value)
        return value


def parse_rate_limit_options(
    options: RateLimitOptions | Mapping[str, Any] | None = None,
) -> RateLimitOptions:
    """Validate user-supplied options into a ``RateLimitOptions`` instance.

    Args:
        options: Ready-made options, a mapping of raw values, or None for defaults.

    Returns:
        RateLimitOptions: Validated, frozen options.

    Raises:
        ConfigurationAppError: If any option is invalid.
    """

    if isinstance(options, RateLimitOptions):
        return options

    try:
        return RateLimitOptions.model_validate(dict(options or {}))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or "options"
        raise ConfigurationAppError(
            code="invalid_rate_limit_options",
            message=f"Invalid rate limit option '{field}': {first.get('msg', 'invalid value')}",
            details={"field": field},
        ) from exc


def _build_upstash_settings() -> "UpstashSettings":
    """Build Upstash settings from environment.

    Static type checkers treat fields as constructor arguments, which is not
    how BaseSettings is intended to be used.
    """

    return UpstashSettings()  # type: ignore[call-arg]


def _build_vercel_kv_settings() -> "VercelKVSettings":
    """Build Vercel KV settings from environment."""

    return VercelKVSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment."""

    return AppSettings()  # type: ignore[call-arg]


class UpstashSettings(BaseSettings):
    """Credentials for the Upstash Redis REST API."""

    url: str | None = Field(
        None,
        description="REST endpoint, e.g. https://<db>.upstash.io",
    )
    token: str | None = Field(
        None,
        description="REST bearer token",
    )

    model_config = SettingsConfigDict(
        env_prefix="UPSTASH_",
        case_sensitive=False,
    )


class VercelKVSettings(BaseSettings):
    """Credentials for Vercel KV (Upstash-compatible REST API)."""

    url: str | None = Field(
        None,
        description="KV REST endpoint",
    )
    token: str | None = Field(
        None,
        description="KV REST bearer token",
    )

    model_config = SettingsConfigDict(
        env_prefix="KV_REST_API_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file after this size (0 disables)")
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field("X-Request-ID", description="Header carrying the request id")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration for the bundled demo service."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enable rate limiting on the demo routes",
    )
    rate_limit_requests: int = Field(
        5,
        description="Maximum number of requests allowed per window",
        ge=1,
    )
    rate_limit_window_seconds: float = Field(
        60,
        description="Rate limit window size in seconds",
        gt=0,
    )
    rate_limit_provider: RemoteProvider = Field(
        RemoteProvider.UPSTASH,
        description="Remote counter backend for the demo routes",
    )
    rate_limit_cache_disabled: bool = Field(
        False,
        description="Bypass the local LRU cache",
    )
    rate_limit_error_message: str | None = Field(
        None,
        description="Custom message returned with 429 responses",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    remote_timeout_seconds: float = Field(
        5.0,
        description="Timeout for calls to the remote counter store",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    def rate_limit_options(self) -> RateLimitOptions:
        """Translate the demo settings into route-level options."""

        return RateLimitOptions(
            timeframe=self.rate_limit_window_seconds,
            requests_limit=self.rate_limit_requests,
            cache_disabled=self.rate_limit_cache_disabled,
            provider=self.rate_limit_provider,
            error_message=self.rate_limit_error_message,
            include_headers=self.rate_limit_include_headers,
        )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.

    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    upstash: UpstashSettings = Field(default_factory=_build_upstash_settings)
    vercel_kv: VercelKVSettings = Field(default_factory=_build_vercel_kv_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
