# tests/routers/test_performance_api.py
"""
Integration tests for the performance endpoints.

- GET /portfolios/{id}/performance/metrics
- GET /portfolios/{id}/performance/twr
- GET /portfolios/{id}/performance/mwr (?strict)
- GET /portfolios/{id}/performance/annualized
- GET /portfolios/{id}/performance/benchmark
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from portfolio_tracker.utils.date_utils import utc_today

START = date(2024, 1, 1)
MID = date(2024, 7, 1)
END = date(2024, 12, 31)
PERIOD = {"start_date": START.isoformat(), "end_date": END.isoformat()}


def approx(value, expected, tolerance="0.000001"):
    return abs(Decimal(value) - Decimal(expected)) < Decimal(tolerance)


@pytest.fixture
def funded_portfolio(make_portfolio, record, oracle):
    """10000 invested in AAPL on START, 5000 cash deposited on MID."""
    portfolio = make_portfolio()
    record(portfolio, "DEPOSIT", START, "10000")
    record(portfolio, "BUY", START, "100", "AAPL", "100")
    record(portfolio, "DEPOSIT", MID, "5000")
    oracle.set_closes("AAPL", {START: "100", MID: "120", END: "130"})
    return portfolio


# =============================================================================
# TWR
# =============================================================================

class TestTWR:

    def test_twr(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/twr", params=PERIOD, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert approx(data["twr"], "0.270588")
        assert approx(data["twr_pct"], "27.0588", tolerance="0.0001")
        assert Decimal(data["start_value"]) == Decimal("10000")
        assert Decimal(data["end_value"]) == Decimal("18000")
        assert data["calendar_days"] == 365
        assert len(data["sub_periods"]) == 2

    def test_unfunded_portfolio_has_null_twr(self, client: TestClient, auth_headers, make_portfolio):
        portfolio = make_portfolio()

        response = client.get(f"/portfolios/{portfolio.id}/performance/twr", params=PERIOD, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["twr"] is None

    def test_inverted_period(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/twr",
            params={"start_date": "2024-06-01", "end_date": "2024-01-01"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATE_RANGE"

    def test_future_end_date(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/twr",
            params={"end_date": (utc_today() + timedelta(days=5)).isoformat()},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATE_RANGE"

    def test_other_principal_forbidden(self, client: TestClient, other_auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/twr", params=PERIOD, headers=other_auth_headers
        )

        assert response.status_code == 403


# =============================================================================
# MWR
# =============================================================================

class TestMWR:

    def test_mwr_converges(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/mwr", params=PERIOD, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["converged"] is True
        assert data["error_code"] is None
        assert Decimal("0.15") < Decimal(data["mwr"]) < Decimal("0.35")

    def test_non_convergence_is_reported(self, client: TestClient, auth_headers, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", MID, "1000")
        record(portfolio, "BUY", MID, "10", "ZZZ", "100")
        oracle.set_closes("ZZZ", {MID: "100", END: "0"})
        url = f"/portfolios/{portfolio.id}/performance/mwr"

        lenient = client.get(url, params=PERIOD, headers=auth_headers)
        strict = client.get(url, params={**PERIOD, "strict": "true"}, headers=auth_headers)

        assert lenient.status_code == 200
        assert lenient.json()["converged"] is False
        assert lenient.json()["error_code"] == "IRR_NONCONVERGENT"
        assert strict.status_code == 400
        assert strict.json()["code"] == "IRR_NONCONVERGENT"
        assert "iterations" in strict.json()["details"]


# =============================================================================
# ANNUALIZED / BENCHMARK / METRICS
# =============================================================================

class TestAnnualizedAndBenchmark:

    def test_annualized(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/annualized", params=PERIOD, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert approx(data["annualized_return"], "0.2")
        assert Decimal(data["years"]) == Decimal("1")
        assert Decimal(data["net_deposits"]) == Decimal("5000")

    def test_benchmark_alpha(self, client: TestClient, auth_headers, funded_portfolio, oracle):
        oracle.set_closes("SPY", {START: "400", MID: "420", END: "440"})

        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/benchmark", params=PERIOD, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["benchmark_symbol"] == "SPY"
        assert approx(data["benchmark_twr"], "0.1")
        assert approx(data["alpha"], "0.170588")

    def test_unknown_benchmark(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/benchmark",
            params={**PERIOD, "benchmark_symbol": "NOPE"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestMetrics:

    def test_metrics_summary(self, client: TestClient, auth_headers, funded_portfolio):
        response = client.get(
            f"/portfolios/{funded_portfolio.id}/performance/metrics", params=PERIOD, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["market_value"]) == Decimal("13000")
        assert Decimal(data["cash_balance"]) == Decimal("5000")
        assert Decimal(data["total_value"]) == Decimal("18000")
        assert Decimal(data["total_cost_basis"]) == Decimal("10000")
        assert Decimal(data["unrealized_gain"]) == Decimal("3000")
        assert Decimal(data["total_deposits"]) == Decimal("5000")
        assert approx(data["twr"]["twr"], "0.270588")
        assert data["mwr"]["converged"] is True
        assert data["priced_at_cost"] == []

    def test_unpriced_symbol_valued_at_cost(self, client: TestClient, auth_headers, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", START, "1000")
        record(portfolio, "BUY", START, "10", "NOPRICE", "50")

        response = client.get(f"/portfolios/{portfolio.id}/performance/metrics", params=PERIOD, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["priced_at_cost"] == ["NOPRICE"]
        assert Decimal(data["market_value"]) == Decimal("500")
        assert Decimal(data["total_value"]) == Decimal("1000")
