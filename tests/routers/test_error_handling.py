# tests/routers/test_error_handling.py
"""
Integration tests for error handling across all API endpoints.

These tests verify:
- Consistent error response format {"error", "code", "details"}
- Correct HTTP status codes for different error types
- Bearer authentication failures (401 + WWW-Authenticate)
- Ownership failures (403)
- Request validation errors (400 with per-field details)
- Health endpoints
"""

import uuid
from datetime import timedelta

from fastapi.testclient import TestClient
from jose import jwt

from portfolio_tracker.config import settings
from portfolio_tracker.services.auth import JWTHandler


# =============================================================================
# TEST: AUTHENTICATION (401)
# =============================================================================

class TestAuthenticationErrors:

    def test_missing_token(self, client: TestClient):
        response = client.get("/portfolios")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        data = response.json()
        assert data["code"] == "UNAUTHORIZED"
        assert data["error"] == "Not authenticated"

    def test_garbage_token(self, client: TestClient):
        response = client.get("/portfolios", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_expired_token(self, client: TestClient):
        token = JWTHandler.create_access_token(str(uuid.uuid4()), expires_delta=timedelta(seconds=-10))

        response = client.get("/portfolios", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_token_signed_with_other_secret(self, client: TestClient):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "access"},
            settings.jwt_secret_key + "-other",
            algorithm=settings.jwt_algorithm,
        )

        response = client.get("/portfolios", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_non_bearer_scheme(self, client: TestClient):
        response = client.get("/portfolios", headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert response.status_code == 401


# =============================================================================
# TEST: AUTHORIZATION AND NOT FOUND
# =============================================================================

class TestOwnershipAndNotFound:

    def test_forbidden_shape(self, client: TestClient, other_auth_headers, make_portfolio):
        portfolio = make_portfolio()

        response = client.get(f"/portfolios/{portfolio.id}/holdings", headers=other_auth_headers)

        assert response.status_code == 403
        data = response.json()
        assert data["code"] == "FORBIDDEN"
        assert "portfolio" in data["error"].lower()
        assert "details" not in data

    def test_not_found_shape(self, client: TestClient, auth_headers):
        response = client.get("/portfolios/31337/tax-lots", headers=auth_headers)

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "PORTFOLIO_NOT_FOUND"
        assert data["details"] == {"resource_type": "Portfolio", "resource_id": 31337}


# =============================================================================
# TEST: VALIDATION (400)
# =============================================================================

class TestValidationErrors:

    def test_request_validation_details(self, client: TestClient, auth_headers, make_portfolio):
        portfolio = make_portfolio()

        response = client.post(
            f"/portfolios/{portfolio.id}/transactions",
            json={"transaction_type": "BUY", "date": "not-a-date", "quantity": "-1"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["error"] == "Request validation failed"
        fields = {d["field"] for d in data["details"]}
        assert {"body.date", "body.quantity"} <= fields
        assert all({"field", "message", "type"} <= set(d) for d in data["details"])

    def test_bad_path_parameter(self, client: TestClient, auth_headers):
        response = client.get("/portfolios/abc", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "path.portfolio_id"

    def test_service_validation_carries_field(self, client: TestClient, auth_headers, make_portfolio):
        portfolio = make_portfolio()

        response = client.post(
            f"/portfolios/{portfolio.id}/transactions",
            json={"transaction_type": "SELL", "date": "2024-01-02", "quantity": "1", "price": "10"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "symbol"}


# =============================================================================
# TEST: CORRELATION ID ON ERRORS
# =============================================================================

class TestCorrelationIdOnErrors:

    def test_error_responses_carry_correlation_id(self, client: TestClient):
        response = client.get("/portfolios", headers={"X-Correlation-ID": "trace-401"})

        assert response.status_code == 401
        assert response.headers["X-Correlation-ID"] == "trace-401"


# =============================================================================
# TEST: HEALTH
# =============================================================================

class TestHealth:

    def test_root(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"

    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["scheduler"]["status"] == "stopped"
        assert data["checks"]["price_oracle"]["critical"] is False

    def test_liveness(self, client: TestClient):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client: TestClient):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}
