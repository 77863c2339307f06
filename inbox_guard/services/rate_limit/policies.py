"""Limit policies per protected endpoint class.

The registry is a fixed table keyed by the ``LimitType`` enum. Lookups by
string go through ``LimitType.parse`` so an unknown name is reported as a
``ConfigurationError`` (a deployment bug) instead of a ``KeyError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from inbox_guard.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class LimitType(str, Enum):
    """Named categories of protected operations."""

    AUTH_LOGIN = "AUTH_LOGIN"
    AUTH_SIGNUP = "AUTH_SIGNUP"
    MESSAGE_SEND = "MESSAGE_SEND"
    FILE_UPLOAD = "FILE_UPLOAD"
    DASHBOARD_READ = "DASHBOARD_READ"
    WEBHOOK_INGEST = "WEBHOOK_INGEST"
    API_READ = "API_READ"
    API_WRITE = "API_WRITE"

    @classmethod
    def parse(cls, value: "LimitType | str") -> "LimitType":
        """Coerce a name into a LimitType.

        Raises:
            ConfigurationError: If the name is not a known limit type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                code="unknown_limit_type",
                message=f"Unknown limit type: '{value}'",
                details={"hint": f"Known limit types: {', '.join(t.value for t in cls)}"},
            ) from None


@dataclass(frozen=True)
class LimitPolicy:
    """Budget for one limit type.

    Attributes:
        name: Limit type this policy applies to.
        points: Requests allowed per window.
        window_seconds: Window length, counted from the first request.
        block_seconds: Denial period after the budget is exceeded (0 for none).
    """

    name: LimitType
    points: int
    window_seconds: int
    block_seconds: int

    def __post_init__(self) -> None:
        problems = []
        if self.points < 1:
            problems.append("points must be >= 1")
        if self.window_seconds < 1:
            problems.append("window_seconds must be > 0")
        if self.block_seconds < 0:
            problems.append("block_seconds must be >= 0")
        if problems:
            raise ConfigurationError(
                code="invalid_limit_policy",
                message=f"Invalid policy for {self.name.value}: {'; '.join(problems)}",
            )


DEFAULT_POLICIES: Mapping[LimitType, LimitPolicy] = MappingProxyType(
    {
        # Authentication: strict, brute force protection
        LimitType.AUTH_LOGIN: LimitPolicy(LimitType.AUTH_LOGIN, 5, 900, 1800),
        LimitType.AUTH_SIGNUP: LimitPolicy(LimitType.AUTH_SIGNUP, 3, 3600, 3600),
        LimitType.MESSAGE_SEND: LimitPolicy(LimitType.MESSAGE_SEND, 60, 60, 1800),
        LimitType.FILE_UPLOAD: LimitPolicy(LimitType.FILE_UPLOAD, 10, 3600, 3600),
        LimitType.DASHBOARD_READ: LimitPolicy(LimitType.DASHBOARD_READ, 50, 60, 300),
        # Platform webhooks arrive in bursts from a handful of sender IPs
        LimitType.WEBHOOK_INGEST: LimitPolicy(LimitType.WEBHOOK_INGEST, 1000, 60, 300),
        LimitType.API_READ: LimitPolicy(LimitType.API_READ, 100, 60, 300),
        LimitType.API_WRITE: LimitPolicy(LimitType.API_WRITE, 30, 60, 600),
    }
)

_OVERRIDABLE_FIELDS = {"points", "window_seconds", "block_seconds"}


class PolicyRegistry:
    """Immutable lookup table from limit type to policy."""

    def __init__(self, policies: Mapping[LimitType, LimitPolicy] | None = None) -> None:
        self._policies = MappingProxyType(dict(policies or DEFAULT_POLICIES))

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, Mapping[str, Any]] | None) -> "PolicyRegistry":
        """Build a registry from the defaults patched by operator overrides.

        Args:
            overrides: ``{"MESSAGE_SEND": {"points": 120}}`` style mapping,
                typically RATELIMIT_POLICY_OVERRIDES.

        Returns:
            PolicyRegistry with the overrides applied.

        Raises:
            ConfigurationError: On unknown limit types, unknown fields or
                values that produce an invalid policy.
        """
        policies = dict(DEFAULT_POLICIES)
        for name, fields in (overrides or {}).items():
            limit_type = LimitType.parse(name)
            unknown = set(fields) - _OVERRIDABLE_FIELDS
            if unknown:
                raise ConfigurationError(
                    code="invalid_policy_override",
                    message=f"Unknown policy fields for {limit_type.value}: {', '.join(sorted(unknown))}",
                )
            try:
                values = {key: int(value) for key, value in fields.items()}
            except (TypeError, ValueError):
                raise ConfigurationError(
                    code="invalid_policy_override",
                    message=f"Policy override values for {limit_type.value} must be integers",
                ) from None
            policies[limit_type] = replace(policies[limit_type], **values)
            logger.info(
                "rate_limit.policy_override",
                extra={"limit_type": limit_type.value, **values},
            )
        return cls(policies)

    def policy_for(self, limit_type: LimitType | str) -> LimitPolicy:
        """Return the policy for ``limit_type``.

        Raises:
            ConfigurationError: If the limit type is unknown or has no policy.
        """
        parsed = LimitType.parse(limit_type)
        policy = self._policies.get(parsed)
        if policy is None:
            raise ConfigurationError(
                code="missing_limit_policy",
                message=f"No policy registered for limit type '{parsed.value}'",
            )
        return policy

    def limit_types(self) -> list[LimitType]:
        return list(self._policies)

    def __iter__(self):
        return iter(self._policies.values())

    def __len__(self) -> int:
        return len(self._policies)
