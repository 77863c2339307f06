"""Store key layout for rate limit state."""

from __future__ import annotations

from dataclasses import dataclass

from inbox_guard.services.rate_limit.policies import LimitType


@dataclass(frozen=True)
class RateLimitKeys:
    """Builds every key the limiter reads or writes.

    Layout (with the default ``ratelimit`` prefix):
        ratelimit:<limitType>:<identifier>            window counter
        ratelimit:<limitType>:<identifier>:blocked    block marker
        ratelimit:whitelist / ratelimit:blacklist     reputation sets
        ratelimit:blacklist:reasons                   why each entry was blacklisted
        ratelimit:violations                          rolling violation log
        ratelimit:violations:count:<identifier>       violation counter
    """

    prefix: str = "ratelimit"

    def counter(self, limit_type: LimitType, identifier: str) -> str:
        return f"{self.prefix}:{limit_type.value}:{identifier}"

    def block(self, limit_type: LimitType, identifier: str) -> str:
        return f"{self.counter(limit_type, identifier)}:blocked"

    @property
    def whitelist(self) -> str:
        return f"{self.prefix}:whitelist"

    @property
    def blacklist(self) -> str:
        return f"{self.prefix}:blacklist"

    @property
    def blacklist_reasons(self) -> str:
        return f"{self.prefix}:blacklist:reasons"

    @property
    def violations(self) -> str:
        return f"{self.prefix}:violations"

    def violation_count(self, identifier: str) -> str:
        return f"{self.prefix}:violations:count:{identifier}"
