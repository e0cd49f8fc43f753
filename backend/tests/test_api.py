"""
Tests for the HTTP API.

Tests cover:
- Structured error bodies and status codes
- Authentication and ownership rules
- Endpoint wiring for webhooks, tiers, payouts and referrals
"""

import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from refengine.api.deps import get_database, get_gateway, get_notifier, get_tier_service
from refengine.api.main import app
from refengine.auth import create_access_token
from refengine.notifications import Notifier

from conftest import VALID_SIGNATURE


def auth(email: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(email, role)}"}


@pytest.fixture
def client(database, gateway):
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: Notifier(database)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


class TestErrors:
    """Test error mapping."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_engine_error_body(self, client):
        response = client.post("/api/v1/tiers/calculate", json={}, headers=auth("a@x.io"))

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "Account a@x.io not found",
            "error_code": "account_not_found",
        }

    def test_request_validation_is_400(self, client):
        response = client.post("/api/v1/payouts/request", json={"amount": "lots"}, headers=auth("a@x.io"))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "validation_error"

    def test_unexpected_error_is_500(self, client):
        def broken():
            raise RuntimeError("boom")

        app.dependency_overrides[get_tier_service] = broken

        response = client.get("/api/v1/tiers")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "message": "Internal server error",
            "error_code": "internal_error",
        }

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestAuth:
    """Test authentication and ownership."""

    def test_missing_token_is_401(self, client):
        response = client.post("/api/v1/tiers/calculate", json={})

        assert response.status_code == 401
        assert response.json()["error_code"] == "unauthorized"

    def test_garbage_token_is_401(self, client):
        response = client.get("/api/v1/payouts", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_other_account_is_403(self, client, make_account, three_tiers):
        make_account("b@x.io")

        response = client.post("/api/v1/tiers/calculate", json={"user_email": "b@x.io"}, headers=auth("a@x.io"))

        assert response.status_code == 403

    def test_admin_may_name_any_account(self, client, make_account, three_tiers):
        make_account("b@x.io")

        response = client.post(
            "/api/v1/tiers/calculate", json={"user_email": "b@x.io"}, headers=auth("root@x.io", "admin")
        )

        assert response.status_code == 200
        assert response.json()["current_tier"]["tier_level"] == 1

    def test_service_role_may_name_any_account(self, client, make_account, three_tiers):
        make_account("b@x.io")

        response = client.post(
            "/api/v1/tiers/calculate", json={"user_email": "b@x.io"}, headers=auth("svc@x.io", "service")
        )

        assert response.status_code == 200

    def test_admin_endpoints_require_admin(self, client):
        response = client.post("/api/v1/tiers/defaults", headers=auth("a@x.io"))
        assert response.status_code == 403


class TestTiers:
    """Test tier endpoints."""

    def test_no_tiers_is_400(self, client, make_account):
        make_account("a@x.io")

        response = client.post("/api/v1/tiers/calculate", headers=auth("a@x.io"))

        assert response.status_code == 400
        assert response.json()["error_code"] == "no_tiers_configured"

    def test_install_and_list(self, client):
        created = client.post("/api/v1/tiers/defaults", headers=auth("root@x.io", "admin"))
        listed = client.get("/api/v1/tiers")

        assert created.json()["created"] == 6
        assert len(listed.json()["tiers"]) == 6


class TestWebhook:
    """Test the webhook endpoint."""

    def payload(self):
        return json.dumps({
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_1",
                "amount_total": 10000,
                "customer_email": "buyer@x.io",
                "metadata": {"referral_code": "AAAAAAAA"},
            }},
        })

    def test_bad_signature_is_400(self, client):
        response = client.post(
            "/api/v1/webhooks/stripe", content=self.payload(), headers={"stripe-signature": "forged"}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_signature"

    def test_processes_event_once(self, client, make_account, gateway):
        make_account("a@x.io", referral_code="AAAAAAAA", gateway_customer_id="cus_a")
        headers = {"stripe-signature": VALID_SIGNATURE}

        first = client.post("/api/v1/webhooks/stripe", content=self.payload(), headers=headers)
        second = client.post("/api/v1/webhooks/stripe", content=self.payload(), headers=headers)

        assert first.status_code == 200
        assert first.json()["result"]["reward"] == "10.00"
        assert second.json()["result"]["duplicate"] is True
        assert len(gateway.credits) == 1

    def test_gateway_failure_is_402(self, client, make_account, gateway):
        make_account("a@x.io", referral_code="AAAAAAAA", gateway_customer_id="cus_a")
        gateway.fail_credits = 1

        response = client.post(
            "/api/v1/webhooks/stripe", content=self.payload(), headers={"stripe-signature": VALID_SIGNATURE}
        )

        assert response.status_code == 402
        assert response.json()["error_code"] == "gateway_error"


class TestPayouts:
    """Test payout endpoints."""

    def test_request_and_list(self, client, payable_account):
        payable_account("a@x.io", "30.00")

        response = client.post("/api/v1/payouts/request", json={"amount": "20.00"}, headers=auth("a@x.io"))
        history = client.get("/api/v1/payouts", headers=auth("a@x.io"))

        assert response.status_code == 200
        assert response.json()["amount"] == "20.00"
        assert [p["status"] for p in history.json()["payouts"]] == ["completed"]

    def test_below_minimum_is_400(self, client, payable_account):
        payable_account("a@x.io", "30.00")

        response = client.post("/api/v1/payouts/request", json={"amount": "1.00"}, headers=auth("a@x.io"))

        assert response.status_code == 400
        assert response.json()["error_code"] == "below_minimum_payout"

    def test_platform_balance_is_402(self, client, payable_account, gateway):
        payable_account("a@x.io", "30.00")
        gateway.available = Decimal("0")

        response = client.post("/api/v1/payouts/request", json={"amount": "20.00"}, headers=auth("a@x.io"))

        assert response.status_code == 402
        assert response.json()["error_code"] == "insufficient_platform_balance"

    def test_batch_and_review(self, client, payable_account):
        payable_account("a@x.io", "60.00")
        admin = auth("root@x.io", "admin")

        batch = client.post("/api/v1/payouts/automated", json={"threshold": "50", "auto_approve": False}, headers=admin)
        history = client.get("/api/v1/payouts", headers=auth("a@x.io")).json()["payouts"]
        review = client.post(f"/api/v1/payouts/{history[0]['id']}/review", json={"action": "approve"}, headers=admin)

        assert batch.json()["pending_review"] == 1
        assert review.status_code == 200
        assert review.json()["status"] == "completed"

    def test_batch_requires_admin(self, client):
        response = client.post("/api/v1/payouts/automated", json={}, headers=auth("a@x.io"))
        assert response.status_code == 403


class TestReferral:
    """Test referral endpoints."""

    def test_code_then_signup(self, client):
        code = client.get("/api/v1/referral/code", headers=auth("a@x.io")).json()["code"]

        response = client.post(
            "/api/v1/referral/track-signup", json={"referral_code": code}, headers=auth("new@x.io")
        )
        stats = client.get("/api/v1/referral/stats", headers=auth("a@x.io")).json()

        assert response.status_code == 200
        assert response.json()["total_paid"] == "6.00"
        assert stats["total_referrals"] == 1
        assert stats["total_earnings"] == "5.00"

    def test_unknown_code_is_400(self, client):
        response = client.post(
            "/api/v1/referral/track-signup", json={"referral_code": "NOPE2345"}, headers=auth("new@x.io")
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_referral_code"

    def test_validate_is_public(self, client, make_account):
        make_account("jane@x.io", name="Jane Doe", referral_code="JANE2345")

        response = client.post("/api/v1/referral/validate", json={"code": "JANE2345"})

        assert response.json() == {
            "valid": True,
            "referral_code": "JANE2345",
            "referrer_name": "Jane",
            "error": None,
        }

    def test_admin_commission_ledger(self, client):
        code = client.get("/api/v1/referral/code", headers=auth("a@x.io")).json()["code"]
        client.post("/api/v1/referral/track-signup", json={"referral_code": code}, headers=auth("new@x.io"))

        response = client.get("/api/v1/admin/commissions", headers=auth("root@x.io", "admin"))

        assert response.status_code == 200
        assert response.json()["totals"] == {"referral": "6.00"}
        assert len(response.json()["commissions"]) == 1
