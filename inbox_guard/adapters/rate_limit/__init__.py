"""Rate limit store adapters.

This package hides the shared counter store behind a small abstraction so the
limiter runs unchanged on Redis in production and on process memory in tests.
"""

from inbox_guard.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    CounterHit,
    HitStatus,
)
from inbox_guard.adapters.rate_limit.factory import create_rate_limit_store
from inbox_guard.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from inbox_guard.adapters.rate_limit.redis_store import RedisRateLimitStore

__all__ = [
    "AbstractRateLimitStore",
    "CounterHit",
    "HitStatus",
    "InMemoryRateLimitStore",
    "RedisRateLimitStore",
    "create_rate_limit_store",
]
