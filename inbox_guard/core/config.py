"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


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

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists and we are not under pytest
_env_file = (
    str(_env_path)
    if _env_path.is_file() and os.getenv("TESTING", "").lower() != "true"
    else None
)


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admin_auth_required: bool = Field(
        True,
        description="Whether the admin surface requires an X-Admin-Key header",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of operator keys accepted by the admin routes",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' (machine friendly) or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file' (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared counter store connection settings."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    socket_timeout_seconds: float = Field(
        0.25,
        description="Per-command timeout; limiter calls sit on the request path",
        gt=0,
    )
    connect_timeout_seconds: float = Field(
        0.5,
        description="Connection establishment timeout",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiting and abuse mitigation configuration."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting on protected endpoints",
    )
    backend: str = Field(
        "redis",
        description="Counter store backend: 'redis' (shared) or 'memory' (per-process)",
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prefix for every key written to the store",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on responses",
    )
    trust_proxy_headers: bool = Field(
        False,
        description=(
            "Read the client IP from X-Real-IP / X-Forwarded-For style headers. "
            "Enable only behind a proxy that overwrites them; clients can forge them otherwise"
        ),
    )
    escalation_threshold: int = Field(
        10,
        description="Lifetime violations after which an identifier is blacklisted",
        ge=1,
    )
    violation_window_seconds: int = Field(
        86400,
        description="Rolling expiry of the per-identifier violation counter",
        ge=1,
    )
    violation_log_size: int = Field(
        1000,
        description="Capacity of the rolling violation log",
        ge=1,
    )
    recent_violations_limit: int = Field(
        100,
        description="Number of violations returned by the admin stats endpoint",
        ge=1,
    )
    blacklist_retry_after_seconds: int = Field(
        86400,
        description="Retry-After advertised to blacklisted clients",
        ge=1,
    )
    policy_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description=(
            'JSON object overriding built-in policies, e.g. {"MESSAGE_SEND": {"points": 120}}'
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
