"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded, and
points the limiter at the in-memory store.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATELIMIT_BACKEND", "memory")
os.environ.setdefault("APP_ADMIN_AUTH_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from inbox_guard.adapters.rate_limit.in_memory import InMemoryRateLimitStore  # noqa: E402
from inbox_guard.services.rate_limit.limiter import RateLimiter  # noqa: E402


@pytest.fixture
def clock() -> Mock:
    """Controllable time source starting at a fixed epoch second."""
    return Mock(return_value=1_700_000_000.0)


@pytest.fixture
def store(clock: Mock) -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore(clock=clock)


@pytest.fixture
def limiter(store: InMemoryRateLimitStore, clock: Mock) -> RateLimiter:
    return RateLimiter(store, clock=clock)
