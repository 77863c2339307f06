"""Operator controls over limiter state.

Authorization happens at the HTTP layer. Store failures are not failed open
here: an operator must learn that a reset or listing did not happen, so
``StoreUnavailableError`` propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from inbox_guard.core.logging import hash_identifier
from inbox_guard.services.rate_limit.limiter import RateLimiter
from inbox_guard.services.rate_limit.policies import LimitType
from inbox_guard.services.rate_limit.violations import ViolationEntry

logger = logging.getLogger(__name__)

MANUAL_BLACKLIST_REASON = "manual"


@dataclass(frozen=True)
class RateLimitStats:
    recent_violations: list[ViolationEntry]
    whitelist: list[str]
    blacklist: list[str]
    blacklist_reasons: dict[str, str] = field(default_factory=dict)

    @property
    def violation_count(self) -> int:
        return len(self.recent_violations)

    @property
    def whitelist_count(self) -> int:
        return len(self.whitelist)

    @property
    def blacklist_count(self) -> int:
        return len(self.blacklist)


class AdminControlService:
    """Inspect, reset and override rate limit state."""

    def __init__(self, limiter: RateLimiter, *, recent_violations_limit: int = 100) -> None:
        self._limiter = limiter
        self._recent_violations_limit = recent_violations_limit

    def get_stats(self) -> RateLimitStats:
        reputation = self._limiter.reputation
        return RateLimitStats(
            recent_violations=self._limiter.violations.recent(self._recent_violations_limit),
            whitelist=reputation.whitelist(),
            blacklist=reputation.blacklist(),
            blacklist_reasons=reputation.blacklist_reasons(),
        )

    def reset(self, identifier: str, limit_type: LimitType | str | None = None) -> int:
        """Clear counter and block state so the identifier starts fresh.

        Args:
            identifier: Canonical identifier (``user:..`` / ``ip:..``).
            limit_type: Single limit type to reset; every registered type when None.

        Returns:
            Number of store keys removed.

        Raises:
            ConfigurationError: If ``limit_type`` is unknown.
        """
        keys = self._limiter.keys
        if limit_type is None:
            limit_types = self._limiter.registry.limit_types()
        else:
            limit_types = [self._limiter.registry.policy_for(limit_type).name]

        store_keys: list[str] = []
        for item in limit_types:
            store_keys.append(keys.counter(item, identifier))
            store_keys.append(keys.block(item, identifier))
        deleted = self._limiter.store.delete(*store_keys)
        logger.info(
            "rate_limit.admin.reset",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "limit_types": [item.value for item in limit_types],
                "deleted_keys": deleted,
            },
        )
        return deleted

    def whitelist_add(self, identifier: str) -> bool:
        return self._limiter.reputation.whitelist_add(identifier)

    def whitelist_remove(self, identifier: str) -> bool:
        return self._limiter.reputation.whitelist_remove(identifier)

    def blacklist_add(self, identifier: str) -> bool:
        return self._limiter.reputation.blacklist_add(identifier, reason=MANUAL_BLACKLIST_REASON)

    def blacklist_remove(self, identifier: str, *, reset_violations: bool = False) -> bool:
        """Lift a blacklisting.

        The violation counter is kept unless ``reset_violations`` is set, so a
        repeat offender is escalated again after a single further violation.
        """
        removed = self._limiter.reputation.blacklist_remove(identifier)
        if reset_violations:
            self._limiter.violations.clear(identifier)
            logger.info(
                "rate_limit.admin.violations_cleared",
                extra={"identifier_hash": hash_identifier(identifier)},
            )
        return removed
