# tests/routers/test_actions_api.py
"""
Integration tests for the corporate action registry and per-portfolio review.

- POST/GET /corporate-actions
- POST /portfolios/{id}/actions/detect
- GET  /portfolios/{id}/actions and /actions/{action_id}
- POST /portfolios/{id}/actions/{action_id}/approve | reject | apply
"""

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from portfolio_tracker.dependencies import get_corporate_action_workflow
from portfolio_tracker.main import app
from portfolio_tracker.services.corporate_actions import CorporateActionWorkflow


def register(client, headers, **body):
    return client.post("/corporate-actions", json=body, headers=headers)


@pytest.fixture
def holding_aapl(make_portfolio, record):
    portfolio = make_portfolio()
    record(portfolio, "BUY", date(2024, 1, 2), "100", "AAPL", "200")
    return portfolio


@pytest.fixture
def pending_split(client, auth_headers, holding_aapl):
    """A detected 2:1 AAPL split awaiting review."""
    register(client, auth_headers, symbol="AAPL", action_type="SPLIT", action_date="2024-03-01", ratio="2")
    detected = client.post(f"/portfolios/{holding_aapl.id}/actions/detect", headers=auth_headers).json()
    return detected[0]


# =============================================================================
# TEST: /corporate-actions
# =============================================================================

class TestRegistry:

    def test_register_split(self, client: TestClient, auth_headers):
        response = register(client, auth_headers, symbol="aapl", action_type="SPLIT",
                            action_date="2024-03-01", ratio="4")

        assert response.status_code == 201
        data = response.json()
        assert data["symbol"] == "AAPL"
        assert data["action_type"] == "SPLIT"
        assert Decimal(data["ratio"]) == Decimal("4")

    def test_register_spinoff_defaults_cost_allocation(self, client: TestClient, auth_headers):
        response = register(client, auth_headers, symbol="PARENT", action_type="SPINOFF",
                            action_date="2024-05-01", ratio="0.5", new_symbol="child")

        assert response.status_code == 201
        data = response.json()
        assert data["new_symbol"] == "CHILD"
        assert Decimal(data["cost_allocation"]) == Decimal("0.1")

    def test_register_requires_auth(self, client: TestClient):
        response = client.post(
            "/corporate-actions",
            json={"symbol": "AAPL", "action_type": "SPLIT", "action_date": "2024-03-01", "ratio": "2"},
        )

        assert response.status_code == 401

    def test_split_without_ratio(self, client: TestClient, auth_headers):
        response = register(client, auth_headers, symbol="AAPL", action_type="SPLIT", action_date="2024-03-01")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_duplicate_conflicts(self, client: TestClient, auth_headers):
        register(client, auth_headers, symbol="AAPL", action_type="SPLIT", action_date="2024-03-01", ratio="2")

        response = register(client, auth_headers, symbol="AAPL", action_type="SPLIT",
                            action_date="2024-03-01", ratio="3")

        assert response.status_code == 409
        assert response.json()["code"] == "CORPORATE_ACTION_EXISTS"

    def test_non_admin_forbidden(self, client: TestClient, auth_headers):
        app.dependency_overrides[get_corporate_action_workflow] = (
            lambda: CorporateActionWorkflow(admin_principal_ids=["an-admin"])
        )

        response = register(client, auth_headers, symbol="AAPL", action_type="SPLIT",
                            action_date="2024-03-01", ratio="2")

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_list_filtered_by_symbol(self, client: TestClient, auth_headers):
        register(client, auth_headers, symbol="AAPL", action_type="SPLIT", action_date="2024-03-01", ratio="2")
        register(client, auth_headers, symbol="MSFT", action_type="DIVIDEND", action_date="2024-02-01", amount="0.75")

        everything = client.get("/corporate-actions", headers=auth_headers).json()
        msft = client.get("/corporate-actions", params={"symbol": "msft"}, headers=auth_headers).json()

        assert len(everything) == 2
        assert [a["action_type"] for a in msft] == ["DIVIDEND"]


# =============================================================================
# TEST: detection
# =============================================================================

class TestDetect:

    def test_detect_creates_pending_actions(self, client: TestClient, auth_headers, holding_aapl):
        register(client, auth_headers, symbol="AAPL", action_type="SPLIT", action_date="2024-03-01", ratio="2")
        register(client, auth_headers, symbol="TSLA", action_type="SPLIT", action_date="2024-03-01", ratio="3")

        response = client.post(f"/portfolios/{holding_aapl.id}/actions/detect", headers=auth_headers)

        assert response.status_code == 200
        detected = response.json()
        assert len(detected) == 1
        assert detected[0]["status"] == "PENDING"
        assert detected[0]["affected_symbol"] == "AAPL"
        assert Decimal(detected[0]["shares_affected"]) == Decimal("100")
        assert detected[0]["corporate_action"]["symbol"] == "AAPL"

    def test_detect_twice_adds_nothing(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        again = client.post(f"/portfolios/{holding_aapl.id}/actions/detect", headers=auth_headers)

        assert again.json() == []
        listed = client.get(f"/portfolios/{holding_aapl.id}/actions", headers=auth_headers).json()
        assert [a["id"] for a in listed] == [pending_split["id"]]

    def test_list_by_status(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        url = f"/portfolios/{holding_aapl.id}/actions"

        pending = client.get(url, params={"status": "PENDING"}, headers=auth_headers).json()
        applied = client.get(url, params={"status": "APPLIED"}, headers=auth_headers).json()

        assert len(pending) == 1
        assert applied == []

    def test_get_missing_action(self, client: TestClient, auth_headers, holding_aapl):
        response = client.get(f"/portfolios/{holding_aapl.id}/actions/9999", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "ACTION_NOT_FOUND"


# =============================================================================
# TEST: review
# =============================================================================

class TestReview:

    def test_approve_applies_split(self, client: TestClient, auth_headers, principal_id, pending_split, holding_aapl):
        response = client.post(
            f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}/approve",
            json={"notes": "matches the exchange notice"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "APPLIED"
        assert data["reviewer_id"] == principal_id
        assert data["notes"] == "matches the exchange notice"
        assert data["applied_at"] is not None

        holding = client.get(f"/portfolios/{holding_aapl.id}/holdings/AAPL", headers=auth_headers).json()
        assert Decimal(holding["quantity"]) == Decimal("200")
        assert Decimal(holding["total_cost_basis"]) == Decimal("20000")

    def test_approve_without_body(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        response = client.post(
            f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}/approve", headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "APPLIED"

    def test_reject(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        response = client.post(
            f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}/reject",
            json={"reason": "wrong ratio"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"
        assert response.json()["notes"] == "wrong ratio"
        holding = client.get(f"/portfolios/{holding_aapl.id}/holdings/AAPL", headers=auth_headers).json()
        assert Decimal(holding["quantity"]) == Decimal("100")

    def test_review_twice_rejected(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        url = f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}"
        client.post(f"{url}/reject", headers=auth_headers)

        response = client.post(f"{url}/approve", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "ACTION_NOT_PENDING"

    def test_apply_pending_conflicts(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        response = client.post(
            f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}/apply", headers=auth_headers
        )

        assert response.status_code == 409
        assert response.json()["code"] == "ACTION_NOT_APPROVED"

    def test_apply_applied_is_noop(self, client: TestClient, auth_headers, pending_split, holding_aapl):
        url = f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}"
        client.post(f"{url}/approve", headers=auth_headers)

        response = client.post(f"{url}/apply", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "APPLIED"
        holding = client.get(f"/portfolios/{holding_aapl.id}/holdings/AAPL", headers=auth_headers).json()
        assert Decimal(holding["quantity"]) == Decimal("200")

    def test_approved_spinoff_creates_holding(self, client: TestClient, auth_headers, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2023, 1, 2), "100", "PARENT", "50")
        register(client, auth_headers, symbol="PARENT", action_type="SPINOFF", action_date="2024-05-01",
                 ratio="0.5", new_symbol="CHILD", cost_allocation="0.2")
        action = client.post(f"/portfolios/{portfolio.id}/actions/detect", headers=auth_headers).json()[0]

        response = client.post(f"/portfolios/{portfolio.id}/actions/{action['id']}/approve", headers=auth_headers)

        assert response.json()["status"] == "APPLIED"
        parent = client.get(f"/portfolios/{portfolio.id}/holdings/PARENT", headers=auth_headers).json()
        child = client.get(f"/portfolios/{portfolio.id}/holdings/CHILD", headers=auth_headers).json()
        assert Decimal(parent["total_cost_basis"]) == Decimal("4000")
        assert Decimal(child["quantity"]) == Decimal("50")
        assert Decimal(child["total_cost_basis"]) == Decimal("1000")

    def test_failed_application_reported(self, client: TestClient, auth_headers, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "OLD", "40")
        record(portfolio, "SELL", date(2024, 6, 1), "5", "OLD", "45")
        register(client, auth_headers, symbol="OLD", action_type="MERGER", action_date="2024-05-01",
                 ratio="1", new_symbol="NEW")
        action = client.post(f"/portfolios/{portfolio.id}/actions/detect", headers=auth_headers).json()[0]

        response = client.post(f"/portfolios/{portfolio.id}/actions/{action['id']}/approve", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "APPROVED"
        assert response.json()["apply_error"]

    def test_other_principal_cannot_review(self, client: TestClient, other_auth_headers, pending_split,
                                           holding_aapl):
        response = client.post(
            f"/portfolios/{holding_aapl.id}/actions/{pending_split['id']}/approve", headers=other_auth_headers
        )

        assert response.status_code == 403
