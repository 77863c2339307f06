"""Admission control for protected endpoints.

``RateLimiter.evaluate`` is the only entry point request handlers use. It
returns a ``Verdict`` (never raises for a denial) and runs, in order:

1. Reputation gate: whitelisted identifiers are admitted, blacklisted ones
   denied, both without touching counters.
2. Counter/block state machine (one atomic store call):
   UNTRACKED -> ACTIVE -> EXCEEDED -> (block expiry) -> UNTRACKED.
3. On the EXCEEDED transition, the violation recorder, which may blacklist
   the identifier.

If the store is unreachable the limiter fails open: the request is admitted
and ``rate_limit.fail_open`` is logged at ERROR so the outage is alertable.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from inbox_guard.adapters.rate_limit.base import AbstractRateLimitStore, HitStatus
from inbox_guard.core.errors import StoreUnavailableError
from inbox_guard.core.logging import hash_identifier
from inbox_guard.services.rate_limit.identifiers import RequestContext, resolve_identifier
from inbox_guard.services.rate_limit.keys import RateLimitKeys
from inbox_guard.services.rate_limit.policies import LimitPolicy, LimitType, PolicyRegistry
from inbox_guard.services.rate_limit.reputation import Reputation, ReputationGate
from inbox_guard.services.rate_limit.violations import ViolationRecorder

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class VerdictReason(str, Enum):
    """Why a verdict was reached. Internal only, never sent to clients."""

    WITHIN_LIMIT = "within_limit"
    WHITELISTED = "whitelisted"
    FAIL_OPEN = "fail_open"
    LIMIT_EXCEEDED = "limit_exceeded"
    BLOCKED = "blocked"
    BLACKLISTED = "blacklisted"


@dataclass(frozen=True)
class Verdict:
    """Outcome of a rate limit evaluation.

    Attributes:
        decision: ALLOW or DENY.
        limit_type: Limit type that was evaluated.
        limit: Points per window of the policy.
        remaining: Requests left in the current window (0 when denied).
        reset_at: UNIX epoch seconds when the window or block ends.
        retry_after: Seconds the client should wait; only set on DENY.
        reason: Internal classification for logs and tests.
    """

    decision: Decision
    limit_type: LimitType
    limit: int
    remaining: int
    reset_at: int
    retry_after: int | None
    reason: VerdictReason

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


class RateLimiter:
    """Evaluates requests against policies held in a shared store."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        registry: PolicyRegistry | None = None,
        keys: RateLimitKeys | None = None,
        reputation: ReputationGate | None = None,
        violations: ViolationRecorder | None = None,
        blacklist_retry_after_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.registry = registry or PolicyRegistry()
        self.keys = keys or RateLimitKeys()
        self.reputation = reputation or ReputationGate(store, self.keys)
        self.violations = violations or ViolationRecorder(
            store, self.keys, self.reputation, clock=clock
        )
        self.blacklist_retry_after_seconds = blacklist_retry_after_seconds
        self._clock = clock
        self._fail_open_lock = threading.Lock()
        self._fail_open_total = 0

    @property
    def fail_open_total(self) -> int:
        """Requests admitted because the store was unavailable, since start."""
        return self._fail_open_total

    def evaluate(self, context: RequestContext, limit_type: LimitType | str) -> Verdict:
        """Decide whether a request may proceed.

        Args:
            context: Request facts (client IP, optional user id).
            limit_type: Endpoint class being accessed.

        Returns:
            Verdict for the request.

        Raises:
            ConfigurationError: If ``limit_type`` is unknown (fail closed).
        """
        policy = self.registry.policy_for(limit_type)
        identifier = resolve_identifier(context)

        try:
            reputation = self.reputation.check(identifier)
            if reputation is Reputation.TRUSTED:
                return self._allow(policy, policy.points, policy.window_seconds, VerdictReason.WHITELISTED)
            if reputation is Reputation.BANNED:
                verdict = self._deny(policy, self.blacklist_retry_after_seconds, VerdictReason.BLACKLISTED)
                self._log_denied(identifier, verdict)
                return verdict
            return self._check_and_increment(identifier, policy)
        except StoreUnavailableError as exc:
            return self._fail_open(identifier, policy, exc)

    def check_and_increment(self, identifier: str, limit_type: LimitType | str) -> Verdict:
        """Run the counter/block state machine for a resolved identifier.

        Skips the reputation gate. Store failures propagate as
        ``StoreUnavailableError``; ``evaluate`` is where they fail open.
        """
        return self._check_and_increment(identifier, self.registry.policy_for(limit_type))

    def _check_and_increment(self, identifier: str, policy: LimitPolicy) -> Verdict:
        hit = self.store.hit(
            self.keys.counter(policy.name, identifier),
            self.keys.block(policy.name, identifier),
            points=policy.points,
            window_seconds=policy.window_seconds,
            block_seconds=policy.block_seconds,
        )

        if hit.status is HitStatus.ALLOWED:
            verdict = self._allow(
                policy, policy.points - hit.count, hit.ttl_seconds, VerdictReason.WITHIN_LIMIT
            )
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "identifier_hash": hash_identifier(identifier),
                    "limit_type": policy.name.value,
                    "remaining": verdict.remaining,
                },
            )
            return verdict

        if hit.status is HitStatus.BLOCKED:
            verdict = self._deny(policy, hit.ttl_seconds, VerdictReason.BLOCKED)
            self._log_denied(identifier, verdict)
            return verdict

        retry_after = policy.block_seconds if policy.block_seconds > 0 else hit.ttl_seconds
        verdict = self._deny(policy, retry_after, VerdictReason.LIMIT_EXCEEDED)
        try:
            self.violations.record(identifier, policy.name, attempts=hit.count)
        except StoreUnavailableError:
            # The block is already in place; only the bookkeeping is lost.
            logger.error(
                "rate_limit.violation_not_recorded",
                extra={
                    "identifier_hash": hash_identifier(identifier),
                    "limit_type": policy.name.value,
                },
            )
        return verdict

    def _allow(self, policy: LimitPolicy, remaining: int, ttl_seconds: int, reason: VerdictReason) -> Verdict:
        return Verdict(
            decision=Decision.ALLOW,
            limit_type=policy.name,
            limit=policy.points,
            remaining=max(0, remaining),
            reset_at=int(self._clock()) + ttl_seconds,
            retry_after=None,
            reason=reason,
        )

    def _deny(self, policy: LimitPolicy, retry_after: int, reason: VerdictReason) -> Verdict:
        return Verdict(
            decision=Decision.DENY,
            limit_type=policy.name,
            limit=policy.points,
            remaining=0,
            reset_at=int(self._clock()) + retry_after,
            retry_after=retry_after,
            reason=reason,
        )

    def _fail_open(self, identifier: str, policy: LimitPolicy, exc: StoreUnavailableError) -> Verdict:
        with self._fail_open_lock:
            self._fail_open_total += 1
            total = self._fail_open_total
        logger.error(
            "rate_limit.fail_open",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "limit_type": policy.name.value,
                "backend": self.store.backend_name,
                "error_code": exc.code,
                "fail_open_total": total,
            },
        )
        return self._allow(policy, policy.points, policy.window_seconds, VerdictReason.FAIL_OPEN)

    def _log_denied(self, identifier: str, verdict: Verdict) -> None:
        logger.info(
            "rate_limit.denied",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "limit_type": verdict.limit_type.value,
                "reason": verdict.reason.value,
                "retry_after_s": verdict.retry_after,
            },
        )
