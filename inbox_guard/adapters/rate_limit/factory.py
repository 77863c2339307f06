"""Factory pattern for creating rate limit store instances."""

from inbox_guard.adapters.rate_limit.base import AbstractRateLimitStore
from inbox_guard.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from inbox_guard.adapters.rate_limit.redis_store import RedisRateLimitStore
from inbox_guard.core.config import Settings, settings as default_settings
from inbox_guard.core.errors import ConfigurationError


def create_rate_limit_store(cfg: Settings | None = None) -> AbstractRateLimitStore:
    """Instantiate the counter store selected by RATELIMIT_BACKEND.

    No connection is opened here; redis-py connects lazily on first command,
    so an unreachable Redis at boot degrades to fail-open instead of
    preventing startup.

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    cfg = cfg or default_settings
    backend = cfg.rate_limit.backend.lower()

    if backend == "redis":
        return RedisRateLimitStore.from_url(
            cfg.redis.url,
            socket_timeout=cfg.redis.socket_timeout_seconds,
            connect_timeout=cfg.redis.connect_timeout_seconds,
        )

    if backend == "memory":
        return InMemoryRateLimitStore()

    raise ConfigurationError(
        code="unknown_rate_limit_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: redis, memory",
    )
