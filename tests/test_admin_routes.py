"""Integration tests for the rate limit admin routes."""

from collections.abc import Iterator
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from inbox_guard.core.errors import StoreUnavailableError
from inbox_guard.core.rate_limit import get_rate_limiter
from inbox_guard.main import app
from inbox_guard.services.rate_limit.identifiers import RequestContext
from inbox_guard.services.rate_limit.limiter import RateLimiter, VerdictReason
from inbox_guard.services.rate_limit.policies import LimitType

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key-123"}
URL = "/v1/admin/rate-limit"
ANON = RequestContext(remote_ip="203.0.113.5")


@pytest.fixture
def client(limiter: RateLimiter) -> Iterator[TestClient]:
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:
    def test_missing_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get(URL)

        assert response.status_code == 403
        assert "Missing admin key" in response.json()["detail"]

    def test_invalid_key_is_forbidden(self, client: TestClient) -> None:
        response = client.post(
            URL,
            json={"action": "reset", "identifier": "ip:203.0.113.5"},
            headers={"X-Admin-Key": "wrong-key"},
        )

        assert response.status_code == 403

    def test_second_configured_key_works(self, client: TestClient) -> None:
        response = client.get(URL, headers={"X-Admin-Key": "test-admin-key-456"})

        assert response.status_code == 200


class TestStats:
    def test_empty_stats(self, client: TestClient) -> None:
        response = client.get(URL, headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "stats": {
                "recentViolations": [],
                "whitelist": [],
                "blacklist": [],
                "violationCount": 0,
                "whitelistCount": 0,
                "blacklistCount": 0,
                "blacklistReasons": {},
            },
        }

    def test_stats_show_violations(self, client: TestClient, limiter: RateLimiter) -> None:
        for _ in range(6):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        stats = client.get(URL, headers=ADMIN_HEADERS).json()["stats"]

        assert stats["violationCount"] == 1
        violation = stats["recentViolations"][0]
        assert violation["identifier"] == "ip:203.0.113.5"
        assert violation["limitType"] == "AUTH_LOGIN"
        assert violation["attempts"] == 6
        assert violation["timestamp"].startswith("2023-11-14T22:13:20")


class TestActions:
    def test_reset_single_limit_type(self, client: TestClient, limiter: RateLimiter) -> None:
        for _ in range(7):
            limiter.evaluate(ANON, LimitType.AUTH_LOGIN)

        response = client.post(
            URL,
            json={"action": "reset", "identifier": "ip:203.0.113.5", "limitType": "AUTH_LOGIN"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Rate limit reset for ip:203.0.113.5 (AUTH_LOGIN)",
            "changed": True,
        }
        assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).remaining == 4

    def test_reset_all_limit_types(self, client: TestClient) -> None:
        response = client.post(
            URL,
            json={"action": "reset", "identifier": "user:42"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Rate limit reset for user:42 (all limit types)"
        assert response.json()["changed"] is False

    def test_whitelist_round_trip(self, client: TestClient, limiter: RateLimiter) -> None:
        added = client.post(URL, json={"action": "whitelist_add", "identifier": "ip:203.0.113.5"}, headers=ADMIN_HEADERS)
        assert added.json()["message"] == "Added ip:203.0.113.5 to whitelist"
        assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).reason is VerdictReason.WHITELISTED

        removed = client.post(URL, json={"action": "whitelist_remove", "identifier": "ip:203.0.113.5"}, headers=ADMIN_HEADERS)
        assert removed.json() == {"success": True, "message": "Removed ip:203.0.113.5 from whitelist", "changed": True}

    def test_blacklist_add_is_visible_in_stats(self, client: TestClient, limiter: RateLimiter) -> None:
        client.post(URL, json={"action": "blacklist_add", "identifier": "user:9"}, headers=ADMIN_HEADERS)

        stats = client.get(URL, headers=ADMIN_HEADERS).json()["stats"]

        assert stats["blacklist"] == ["user:9"]
        assert stats["blacklistReasons"] == {"user:9": "manual"}

    def test_blacklist_remove_with_violation_reset(self, client: TestClient, limiter: RateLimiter) -> None:
        limiter.reputation.blacklist_add("ip:203.0.113.5", reason="auto_escalation: 10 violations")
        for _ in range(3):
            limiter.violations.record("ip:203.0.113.5", LimitType.AUTH_LOGIN, attempts=6)

        response = client.post(
            URL,
            json={"action": "blacklist_remove", "identifier": "ip:203.0.113.5", "resetViolations": True},
            headers=ADMIN_HEADERS,
        )

        assert response.json()["changed"] is True
        assert limiter.violations.violation_count("ip:203.0.113.5") == 0
        assert limiter.evaluate(ANON, LimitType.AUTH_LOGIN).allowed

    def test_unknown_action_is_rejected(self, client: TestClient) -> None:
        response = client.post(URL, json={"action": "purge", "identifier": "user:1"}, headers=ADMIN_HEADERS)

        assert response.status_code == 422

    def test_unknown_limit_type_is_rejected(self, client: TestClient) -> None:
        response = client.post(
            URL,
            json={"action": "reset", "identifier": "user:1", "limitType": "LOGIN"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 422

    def test_empty_identifier_is_rejected(self, client: TestClient) -> None:
        response = client.post(URL, json={"action": "reset", "identifier": ""}, headers=ADMIN_HEADERS)

        assert response.status_code == 422


class TestStoreOutage:
    def test_admin_operations_report_outage(self, limiter: RateLimiter) -> None:
        limiter.reputation = Mock()
        limiter.reputation.whitelist.side_effect = StoreUnavailableError(
            code="store_unavailable",
            message="Rate limit store unavailable",
            details={"backend": "redis", "operation": "members"},
        )
        app.dependency_overrides[get_rate_limiter] = lambda: limiter
        try:
            response = TestClient(app).get(URL, headers=ADMIN_HEADERS)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "store_unavailable"
