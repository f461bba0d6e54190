"""
API Tests for the Impact Credits service

Tests cover:
1. Health and tier endpoints
2. Action execution and idempotency over HTTP
3. Credits, purchases and balance reads
4. Error mapping to status codes and error codes
5. Pioneer lifecycle endpoints
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from impact_ledger.api import app


client = TestClient(app)


class TestSystemAndTiers:
    def test_health(self):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_list_tiers(self):
        response = client.get("/tiers")

        assert response.status_code == 200
        assert [t["slug"] for t in response.json()] == [
            "explorer_mountain_spring",
            "explorer_mountain_stream",
            "explorer_riverbed",
            "explorer_lifeline",
        ]

    def test_resolve_tier(self):
        response = client.get("/tiers/resolve", params={"amount": "49.99"})

        assert response.status_code == 200
        assert response.json()["id"] == "458b4bf6-3444-4304-84d4-b2a7c3f27a3c"

    def test_resolve_below_minimum(self):
        response = client.get("/tiers/resolve", params={"amount": "4.99"})

        assert response.status_code == 200
        assert response.json() is None

    def test_resolve_invalid_amount(self):
        """Test that a non-numeric amount maps to 422 with a stable code."""
        response = client.get("/tiers/resolve", params={"amount": "abc"})

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_AMOUNT"


class TestActions:
    def test_execute_static_action_once(self):
        """Test that a second execution reports ALREADY_COMPLETED."""
        user_id = uuid4()

        first = client.post(f"/users/{user_id}/actions/quest_completion", json={})
        second = client.post(f"/users/{user_id}/actions/quest_completion", json={})

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert Decimal(first.json()["credits_awarded"]) == Decimal("25")
        assert second.json()["success"] is False
        assert second.json()["reason"] == "ALREADY_COMPLETED"

        balance = client.get(f"/users/{user_id}/balance").json()
        assert Decimal(balance["spendable_balance"]) == Decimal("25")

    def test_execute_contribution(self):
        user_id = uuid4()

        response = client.post(
            f"/users/{user_id}/actions/startnext_contribution",
            json={"context": {"amount": "97.99", "contribution_id": str(uuid4())}},
        )

        assert response.status_code == 200
        assert Decimal(response.json()["credits_awarded"]) == Decimal("100")

    def test_caller_cannot_price_fixed_action(self):
        """Test that a credit_value in the body does not change a catalog-priced award."""
        user_id = uuid4()

        response = client.post(
            f"/users/{user_id}/actions/profile_update", json={"context": {"credit_value": 1000000}}
        )

        assert Decimal(response.json()["credits_awarded"]) == Decimal("50")

    def test_unknown_action(self):
        response = client.post(f"/users/{uuid4()}/actions/does_not_exist", json={})

        assert response.status_code == 404
        assert response.json()["code"] == "ACTION_NOT_FOUND"

    def test_missing_context_field(self):
        response = client.post(f"/users/{uuid4()}/actions/mission_quest", json={"context": {}})

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_MISSION_ID"


class TestLedgerEndpoints:
    def test_credit_and_purchase(self):
        user_id = uuid4()

        credit = client.post(
            f"/users/{user_id}/credits",
            json={"amount": "200", "description": "Community event", "origin_event_id": "event-1"},
        )
        purchase = client.post(f"/users/{user_id}/purchases", json={"amount": "75", "product_id": "tree-1"})

        assert credit.status_code == 201
        assert purchase.status_code == 201
        assert Decimal(purchase.json()["balance"]) == Decimal("125")

    def test_duplicate_origin_conflicts(self):
        user_id = uuid4()
        body = {"amount": "10", "description": "Grant", "origin_event_id": "grant-7"}

        client.post(f"/users/{user_id}/credits", json=body)
        response = client.post(f"/users/{user_id}/credits", json=body)

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_COMPLETED"

    def test_overspend_rejected(self):
        """Test that a debit larger than the balance maps to 409."""
        user_id = uuid4()
        client.post(f"/users/{user_id}/credits", json={"amount": "10", "description": "Grant"})

        response = client.post(f"/users/{user_id}/purchases", json={"amount": "11", "product_id": "tree-1"})

        assert response.status_code == 409
        assert response.json()["code"] == "INSUFFICIENT_BALANCE"

    def test_history_and_summary(self):
        user_id = uuid4()
        client.post(f"/users/{user_id}/actions/profile_update", json={})
        client.post(f"/users/{user_id}/credits", json={"amount": "5", "description": "Grant"})

        history = client.get(f"/users/{user_id}/ledger").json()
        summary = client.get(f"/users/{user_id}/summary").json()

        assert history["total_count"] == 2
        assert Decimal(history["current_balance"]) == Decimal("55")
        assert Decimal(summary["by_source"]["quest"]) == Decimal("50")
        assert Decimal(summary["by_source"]["admin_grant"]) == Decimal("5")

    def test_vesting_report(self):
        user_id = uuid4()
        client.post(f"/users/{user_id}/credits", json={"amount": "40", "description": "Grant"})

        report = client.get(f"/users/{user_id}/vesting").json()

        assert Decimal(report["total_earned"]) == Decimal("40")
        assert Decimal(report["vested_balance"]) == Decimal("0")
        assert report["tranches"][0]["status"] == "in_cliff"

    def test_forfeit_vesting(self):
        user_id = uuid4()
        client.post(f"/users/{user_id}/credits", json={"amount": "40", "description": "Grant"})

        report = client.post(f"/users/{user_id}/vesting/forfeit").json()

        assert report["forfeited"] is True
        assert report["tranches"][0]["status"] == "forfeited"
        assert client.get(f"/users/{user_id}/vesting").json()["forfeited"] is True


class TestPioneerEndpoints:
    def test_approve_then_reject_conflicts(self):
        user_id = uuid4()

        approved = client.post(f"/pioneers/{user_id}/approve")
        rejected = client.post(f"/pioneers/{user_id}/reject")

        assert approved.status_code == 200
        assert approved.json()["access_status"] == "approved"
        assert Decimal(approved.json()["total_impact_credits_earned"]) == Decimal("100")
        assert rejected.status_code == 422
        assert rejected.json()["code"] == "INVALID_STATUS_TRANSITION"

    def test_revoke(self):
        user_id = uuid4()
        client.post(f"/pioneers/{user_id}/approve")

        response = client.post(f"/pioneers/{user_id}/revoke")

        assert response.json()["access_status"] == "revoked"

    def test_refresh_metrics(self):
        user_id = uuid4()
        client.post(f"/users/{user_id}/credits", json={"amount": "15", "description": "Grant"})

        response = client.post("/pioneers/refresh")

        assert response.status_code == 200
        totals = {m["user_id"]: Decimal(m["total_impact_credits_earned"]) for m in response.json()}
        assert totals[str(user_id)] == Decimal("15")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
