"""Tests for the admission decision flow of RateLimiter."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from inbox_guard.adapters.rate_limit.base import AbstractRateLimitStore
from inbox_guard.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from inbox_guard.core.errors import ConfigurationError, StoreUnavailableError
from inbox_guard.services.rate_limit.admin import AdminControlService
from inbox_guard.services.rate_limit.identifiers import RequestContext
from inbox_guard.services.rate_limit.limiter import Decision, RateLimiter, VerdictReason
from inbox_guard.services.rate_limit.policies import LimitType

NOW = 1_700_000_000

ANON = RequestContext(remote_ip="203.0.113.5")
USER = RequestContext(remote_ip="203.0.113.5", user_id="42")


class TestWithinLimit:
    def test_remaining_decreases_to_zero(self, limiter: RateLimiter) -> None:
        verdicts = [limiter.evaluate(ANON, LimitType.AUTH_LOGIN) for _ in range(5)]

        assert [v.decision for v in verdicts] == [Decision.ALLOW] * 5
        assert [v.remaining for v in verdicts] == [4, 3, 2, 1, 0]
        assert all(v.limit == 5 for v in verdicts)
        assert all(v.retry_after is None for v in verdicts)

    def test_reset_at_is_window_end(self, limiter: RateLimiter, clock: Mock) -> None:
        first = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)
        clock.return_value = NOW + 100.0
        second = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert first.reset_at == NOW + 900
        assert second.reset_at == NOW + 900

    def test_accepts_limit_type_name(self, limiter: RateLimiter) -> None:
        assert limiter.evaluate(ANON, "DASHBOARD_READ").remaining == 49

    def test_user_and_ip_budgets_are_separate(self, limiter: RateLimiter) -> None:
        for _ in range(5):
            limiter.evaluate(USER, LimitType.AUTH_LOGIN)

        assert limiter.evaluate(USER, LimitType.AUTH_LOGIN).decision is Decision.DENY
        assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).remaining == 4

    def test_limit_types_are_separate(self, limiter: RateLimiter) -> None:
        for _ in range(6):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert limiter.evaluate(ANON, LimitType.DASHBOARD_READ).allowed


class TestBlocking:
    def test_login_brute_force_scenario(self, limiter: RateLimiter, clock: Mock) -> None:
        for expected in (4, 3, 2, 1, 0):
            assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).remaining == expected

        sixth = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)
        assert sixth.decision is Decision.DENY
        assert sixth.reason is VerdictReason.LIMIT_EXCEEDED
        assert sixth.retry_after == 1800
        assert sixth.remaining == 0

        clock.return_value = NOW + 10.0
        seventh = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)
        assert seventh.decision is Decision.DENY
        assert seventh.reason is VerdictReason.BLOCKED
        assert seventh.retry_after == 1790

        clock.return_value = NOW + 1800.0
        after_block = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)
        assert after_block.decision is Decision.ALLOW
        assert after_block.remaining == 4

    def test_retry_after_never_increases_while_blocked(self, limiter: RateLimiter, clock: Mock) -> None:
        for _ in range(6):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        retry_afters = []
        for offset in (1, 50, 51, 600, 1799):
            clock.return_value = NOW + float(offset)
            verdict = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)
            assert verdict.decision is Decision.DENY
            retry_afters.append(verdict.retry_after)

        assert retry_afters == sorted(retry_afters, reverse=True)
        assert all(value > 0 for value in retry_afters)

    def test_block_transition_records_one_violation(self, limiter: RateLimiter) -> None:
        for _ in range(9):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        recent = limiter.violations.recent(10)
        assert len(recent) == 1
        assert recent[0].identifier == "ip:203.0.113.5"
        assert recent[0].limit_type == "AUTH_LOGIN"
        assert recent[0].attempts == 6
        assert limiter.violations.violation_count("ip:203.0.113.5") == 1

    def test_violation_store_failure_still_denies(self, limiter: RateLimiter) -> None:
        limiter.violations = Mock()
        limiter.violations.record.side_effect = StoreUnavailableError(code="store_unavailable", message="down")
        for _ in range(5):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        verdict = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert verdict.decision is Decision.DENY
        assert verdict.retry_after == 1800


class TestReputation:
    def test_whitelisted_bypasses_counters(self, limiter: RateLimiter, store: InMemoryRateLimitStore) -> None:
        limiter.reputation.whitelist_add("ip:203.0.113.5")

        verdicts = [limiter.evaluate(ANON, LimitType.AUTH_LOGIN) for _ in range(20)]

        assert all(v.reason is VerdictReason.WHITELISTED for v in verdicts)
        assert all(v.remaining == 5 for v in verdicts)
        assert store.get_counter(limiter.keys.counter(LimitType.AUTH_LOGIN, "ip:203.0.113.5")) == 0

    def test_whitelist_wins_over_blacklist(self, limiter: RateLimiter) -> None:
        limiter.reputation.blacklist_add("ip:203.0.113.5", reason="manual")
        limiter.reputation.whitelist_add("ip:203.0.113.5")

        assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).allowed

    def test_blacklisted_denied_without_counting(self, limiter: RateLimiter, store: InMemoryRateLimitStore) -> None:
        limiter.reputation.blacklist_add("ip:203.0.113.5", reason="manual")

        verdict = limiter.evaluate(ANON, LimitType.DASHBOARD_READ)

        assert verdict.decision is Decision.DENY
        assert verdict.reason is VerdictReason.BLACKLISTED
        assert verdict.retry_after == 86400
        assert store.get_counter(limiter.keys.counter(LimitType.DASHBOARD_READ, "ip:203.0.113.5")) == 0

    def test_blacklist_applies_to_every_limit_type(self, limiter: RateLimiter) -> None:
        limiter.reputation.blacklist_add("user:42", reason="manual")

        assert all(not limiter.evaluate(USER, limit_type).allowed for limit_type in LimitType)

    def test_repeated_violations_escalate_to_blacklist(self, limiter: RateLimiter, clock: Mock) -> None:
        limit_types = [LimitType.AUTH_LOGIN, LimitType.AUTH_SIGNUP]
        now = float(NOW)
        for i in range(10):
            limit_type = limit_types[i % 2]
            policy = limiter.registry.policy_for(limit_type)
            for _ in range(policy.points + 1):
                limiter.evaluate(ANON, limit_type)
            now += policy.block_seconds
            clock.return_value = now

        assert limiter.reputation.is_blacklisted("ip:203.0.113.5")
        assert limiter.reputation.blacklist_reasons()["ip:203.0.113.5"] == "auto_escalation: 10 violations"
        verdict = limiter.evaluate(ANON, LimitType.DASHBOARD_READ)
        assert verdict.reason is VerdictReason.BLACKLISTED

    def test_whitelisted_identifier_is_never_escalated_by_traffic(self, limiter: RateLimiter) -> None:
        limiter.reputation.whitelist_add("ip:203.0.113.5")

        for _ in range(200):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert limiter.violations.violation_count("ip:203.0.113.5") == 0
        assert limiter.reputation.blacklist() == []


class TestReset:
    def test_reset_restores_full_budget(self, limiter: RateLimiter) -> None:
        for _ in range(7):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        AdminControlService(limiter).reset("ip:203.0.113.5", LimitType.AUTH_LOGIN)
        verdict = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert verdict.decision is Decision.ALLOW
        assert verdict.remaining == 4


class TestConcurrency:
    def test_webhook_burst_admits_exactly_the_budget(self, limiter: RateLimiter) -> None:
        context = RequestContext(remote_ip="198.51.100.7")

        with ThreadPoolExecutor(max_workers=64) as pool:
            verdicts = list(pool.map(lambda _: limiter.evaluate(context, LimitType.WEBHOOK_INGEST), range(1050)))

        allowed = [v for v in verdicts if v.allowed]
        denied = [v for v in verdicts if not v.allowed]
        assert len(allowed) == 1000
        assert sorted(v.remaining for v in allowed) == list(range(1000))
        assert len(denied) == 50
        assert sum(v.reason is VerdictReason.LIMIT_EXCEEDED for v in denied) == 1
        assert limiter.violations.violation_count("ip:198.51.100.7") == 1


class TestFailures:
    @pytest.fixture
    def broken_store(self) -> Mock:
        store = Mock(spec=AbstractRateLimitStore)
        store.backend_name = "redis"
        error = StoreUnavailableError(code="store_unavailable", message="Rate limit store unavailable")
        store.memberships.side_effect = error
        store.hit.side_effect = error
        return store

    def test_store_outage_fails_open(self, broken_store: Mock, clock: Mock) -> None:
        limiter = RateLimiter(broken_store, clock=clock)

        verdict = limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert verdict.decision is Decision.ALLOW
        assert verdict.reason is VerdictReason.FAIL_OPEN
        assert verdict.remaining == 5
        assert limiter.fail_open_total == 1

    def test_fail_open_is_logged_at_error(self, broken_store: Mock, clock: Mock, caplog) -> None:
        limiter = RateLimiter(broken_store, clock=clock)

        with caplog.at_level("ERROR", logger="inbox_guard.services.rate_limit.limiter"):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        assert any(record.getMessage() == "rate_limit.fail_open" for record in caplog.records)

    def test_fail_open_on_counter_failure(self, broken_store: Mock, clock: Mock) -> None:
        broken_store.memberships.side_effect = None
        broken_store.memberships.return_value = [False, False]
        limiter = RateLimiter(broken_store, clock=clock)

        assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).reason is VerdictReason.FAIL_OPEN

    def test_check_and_increment_propagates_store_errors(self, broken_store: Mock, clock: Mock) -> None:
        limiter = RateLimiter(broken_store, clock=clock)

        with pytest.raises(StoreUnavailableError):
            limiter.check_and_increment("ip:203.0.113.5", LimitType.AUTH_LOGIN)

    def test_unknown_limit_type_fails_closed(self, limiter: RateLimiter) -> None:
        with pytest.raises(ConfigurationError):
            limiter.evaluate(ANON, "LOGIN")

        assert limiter.fail_open_total == 0
