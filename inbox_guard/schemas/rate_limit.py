"""Pydantic schemas for the rate limit admin surface.

Field names are snake_case in Python and camelCase on the wire
(``recentViolations``, ``limitType``...).
"""

from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from inbox_guard.services.rate_limit.policies import LimitType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


AdminAction = Literal[
    "reset",
    "whitelist_add",
    "whitelist_remove",
    "blacklist_add",
    "blacklist_remove",
]


class ViolationEntryOut(_CamelModel):
    identifier: str
    limit_type: str
    attempts: int
    timestamp: str


class RateLimitStatsOut(_CamelModel):
    """Snapshot of limiter state for operators."""

    recent_violations: List[ViolationEntryOut] = Field(
        default_factory=list,
        description="Newest violations first.",
    )
    whitelist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)
    violation_count: int = Field(..., description="Number of entries in recentViolations.")
    whitelist_count: int
    blacklist_count: int
    blacklist_reasons: Dict[str, str] = Field(
        default_factory=dict,
        description="Why each identifier was blacklisted ('manual' or 'auto_escalation: N violations').",
    )


class RateLimitStatsResponse(_CamelModel):
    success: bool = True
    stats: RateLimitStatsOut


class AdminActionRequest(_CamelModel):
    """Operator action on one identifier."""

    action: AdminAction = Field(..., description="Operation to perform.")
    identifier: str = Field(
        ...,
        min_length=1,
        description="Canonical identifier, e.g. 'user:42' or 'ip:203.0.113.5'.",
    )
    limit_type: LimitType | None = Field(
        default=None,
        description="Limit type to reset; every limit type when omitted. Only used by 'reset'.",
    )
    reset_violations: bool = Field(
        default=False,
        description="Also clear the violation counter. Only used by 'blacklist_remove'.",
    )


class AdminActionResponse(_CamelModel):
    success: bool = True
    message: str
    changed: bool = Field(
        ...,
        description="Whether the action modified any state.",
    )
