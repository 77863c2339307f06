"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Rate limit denials are not modelled as exceptions inside the limiter (the
limiter returns a Verdict). ``RateLimitExceededError`` only exists at the
HTTP edge, where aborting the handler is the desired control flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    limit_type: str
    retry_after: int
    backend: str
    operation: str
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


class ValidationAppError(AppError):
    """Raised when input validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class ConfigurationError(AppError):
    """Raised for deployment bugs such as an unknown limit type.

    Never caused by client behaviour; requests hitting it fail closed.
    """


class StoreUnavailableError(AppError):
    """Raised when the shared counter store is unreachable or times out."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the HTTP dependency to abort a handler with a 429."""

    headers: dict[str, str] = field(default_factory=dict)
