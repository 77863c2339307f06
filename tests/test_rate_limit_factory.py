"""Tests for store selection and limiter assembly from settings."""

import pytest

from inbox_guard.adapters.rate_limit import (
    InMemoryRateLimitStore,
    RedisRateLimitStore,
    create_rate_limit_store,
)
from inbox_guard.core.config import RateLimitSettings, Settings
from inbox_guard.core.errors import ConfigurationError
from inbox_guard.core.rate_limit import build_rate_limiter
from inbox_guard.services.rate_limit.policies import LimitType


def _settings(**rate_limit) -> Settings:
    return Settings(rate_limit=RateLimitSettings(**rate_limit))


def test_proxy_headers_are_opt_in() -> None:
    assert RateLimitSettings().trust_proxy_headers is False


def test_memory_backend() -> None:
    assert isinstance(create_rate_limit_store(_settings(backend="memory")), InMemoryRateLimitStore)


def test_redis_backend_connects_lazily() -> None:
    store = create_rate_limit_store(_settings(backend="Redis"))

    assert isinstance(store, RedisRateLimitStore)
    assert store.backend_name == "redis"


def test_unknown_backend() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        create_rate_limit_store(_settings(backend="memcached"))

    assert exc_info.value.code == "unknown_rate_limit_backend"


def test_build_rate_limiter_applies_settings() -> None:
    limiter = build_rate_limiter(
        _settings(
            backend="memory",
            key_prefix="staging",
            escalation_threshold=3,
            blacklist_retry_after_seconds=3600,
            policy_overrides={"MESSAGE_SEND": {"points": 120}},
        )
    )

    assert limiter.keys.whitelist == "staging:whitelist"
    assert limiter.violations.threshold == 3
    assert limiter.blacklist_retry_after_seconds == 3600
    assert limiter.registry.policy_for(LimitType.MESSAGE_SEND).points == 120


def test_build_rate_limiter_rejects_bad_overrides() -> None:
    with pytest.raises(ConfigurationError):
        build_rate_limiter(_settings(backend="memory", policy_overrides={"MESSAGE_SEND": {"burst": 5}}))
