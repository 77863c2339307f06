"""Rate limiting and abuse mitigation services."""

from inbox_guard.services.rate_limit.admin import AdminControlService, RateLimitStats
from inbox_guard.services.rate_limit.identifiers import RequestContext, resolve_identifier
from inbox_guard.services.rate_limit.keys import RateLimitKeys
from inbox_guard.services.rate_limit.limiter import Decision, RateLimiter, Verdict, VerdictReason
from inbox_guard.services.rate_limit.policies import LimitPolicy, LimitType, PolicyRegistry
from inbox_guard.services.rate_limit.reputation import Reputation, ReputationGate
from inbox_guard.services.rate_limit.violations import ViolationEntry, ViolationRecorder

__all__ = [
    "AdminControlService",
    "Decision",
    "LimitPolicy",
    "LimitType",
    "PolicyRegistry",
    "RateLimitKeys",
    "RateLimitStats",
    "RateLimiter",
    "RequestContext",
    "Reputation",
    "ReputationGate",
    "Verdict",
    "VerdictReason",
    "ViolationEntry",
    "ViolationRecorder",
    "resolve_identifier",
]
