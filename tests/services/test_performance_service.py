# tests/services/test_performance_service.py
"""
Tests for PerformanceService against a fake price oracle.

Covers:
- TWR with an intermediate deposit (value = market value + cash)
- MWR, annualized return and strict non-convergence
- Benchmark comparison and missing benchmark prices
- Period defaults and validation
- Price fallback to the last close and to cost basis
- Metrics totals and FX conversion
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from portfolio_tracker.services.exceptions import (
    InvalidDateRangeError,
    IrrNonConvergentError,
    ValidationError,
)
from portfolio_tracker.services.performance import PerformanceService, resolve_period
from portfolio_tracker.utils.date_utils import utc_today

START = date(2024, 1, 1)
MID = date(2024, 7, 1)
END = date(2024, 12, 31)


def approx(value, expected, tolerance="0.000001"):
    return abs(Decimal(value) - Decimal(expected)) < Decimal(tolerance)


@pytest.fixture
def service(oracle) -> PerformanceService:
    return PerformanceService(oracle)


@pytest.fixture
def deposit_portfolio(make_portfolio, record, oracle):
    """
    10000 deposited and invested on START, 5000 deposited in cash on MID.

    Values: 10000 on START, 12000 + 5000 on MID, 13000 + 5000 on END.
    """
    portfolio = make_portfolio()
    record(portfolio, "DEPOSIT", START, "10000")
    record(portfolio, "BUY", START, "100", "AAPL", "100")
    record(portfolio, "DEPOSIT", MID, "5000")
    oracle.set_closes("AAPL", {START: "100", MID: "120", END: "130"})
    return portfolio


# =============================================================================
# PERIOD
# =============================================================================

class TestResolvePeriod:

    def test_defaults_to_first_event_and_today(self):
        start, end = resolve_period(date(2024, 1, 5), None, None)
        assert start == date(2024, 1, 5)
        assert end == utc_today()

    def test_no_events_collapses_to_end(self):
        assert resolve_period(None, None, date(2024, 3, 1)) == (date(2024, 3, 1), date(2024, 3, 1))

    def test_start_after_end_rejected(self):
        with pytest.raises(InvalidDateRangeError) as exc_info:
            resolve_period(None, date(2024, 3, 2), date(2024, 3, 1))
        assert exc_info.value.code == "INVALID_DATE_RANGE"

    def test_future_end_rejected(self):
        with pytest.raises(InvalidDateRangeError):
            resolve_period(None, None, utc_today() + timedelta(days=1))


# =============================================================================
# TWR / MWR / ANNUALIZED
# =============================================================================

class TestReturns:

    def test_twr_with_deposit(self, db, service, deposit_portfolio):
        result = service.get_twr(db, deposit_portfolio, START, END)

        assert approx(result.twr, "0.270588")
        assert approx(result.twr_pct, "27.0588", tolerance="0.0001")
        assert result.start_value == Decimal("10000")
        assert result.end_value == Decimal("18000")
        assert result.calendar_days == 365
        assert len(result.sub_periods) == 2
        assert result.sub_periods[0].end_value == Decimal("17000")

    def test_buy_and_sell_are_not_flows(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", START, "1000")
        record(portfolio, "BUY", START, "10", "AAPL", "100")
        record(portfolio, "SELL", MID, "10", "AAPL", "110")
        oracle.set_closes("AAPL", {START: "100", MID: "110", END: "150"})

        result = service.get_twr(db, portfolio, START, END)

        # Sold at 110 and held cash afterwards
        assert result.twr == Decimal("0.1")
        assert len(result.sub_periods) == 1

    def test_mwr_converges(self, db, service, deposit_portfolio):
        result = service.get_mwr(db, deposit_portfolio, START, END)

        assert result.converged is True
        assert result.error_code is None
        assert Decimal("0.15") < result.mwr < Decimal("0.35")
        assert result.start_value == Decimal("10000")
        assert result.end_value == Decimal("18000")

    def test_mwr_without_opposite_flows_is_reported(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", MID, "1000")
        record(portfolio, "BUY", MID, "10", "ZZZ", "100")
        oracle.set_closes("ZZZ", {MID: "100", END: "0"})

        result = service.get_mwr(db, portfolio, START, END)

        assert result.converged is False
        assert result.mwr is None
        assert result.error_code == "IRR_NONCONVERGENT"

    def test_mwr_strict_raises(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", MID, "1000")
        record(portfolio, "BUY", MID, "10", "ZZZ", "100")
        oracle.set_closes("ZZZ", {MID: "100", END: "0"})

        with pytest.raises(IrrNonConvergentError):
            service.get_mwr(db, portfolio, START, END, strict=True)

    def test_annualized_return(self, db, service, deposit_portfolio):
        result = service.get_annualized_return(db, deposit_portfolio, START, END)

        # 18000 / (10000 + 5000) over exactly one year
        assert approx(result.annualized_return, "0.2")
        assert result.net_deposits == Decimal("5000")
        assert result.net_withdrawals == Decimal("0")
        assert result.years == Decimal("1")

    def test_withdrawal_is_negative_flow(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", START, "1000")
        record(portfolio, "WITHDRAWAL", MID, "500")

        result = service.get_twr(db, portfolio, START, END)

        assert result.twr == Decimal("0")
        assert result.sub_periods[0].cash_flow == Decimal("-500")

    def test_default_start_is_first_transaction(self, db, service, deposit_portfolio):
        result = service.get_twr(db, deposit_portfolio, end_date=END)
        assert result.start_date == START

    def test_future_end_date_rejected(self, db, service, deposit_portfolio):
        with pytest.raises(InvalidDateRangeError):
            service.get_twr(db, deposit_portfolio, START, utc_today() + timedelta(days=3))


# =============================================================================
# BENCHMARK
# =============================================================================

class TestBenchmark:

    def test_alpha_against_benchmark(self, db, service, deposit_portfolio, oracle):
        oracle.set_closes("SPY", {START: "400", MID: "420", END: "440"})

        result = service.get_benchmark_comparison(db, deposit_portfolio, "spy", START, END)

        assert result.benchmark_symbol == "SPY"
        assert approx(result.benchmark_twr, "0.1")
        assert approx(result.alpha, "0.170588")
        assert approx(result.alpha_pct, "17.0588", tolerance="0.0001")

    def test_unknown_benchmark_rejected(self, db, service, deposit_portfolio):
        with pytest.raises(ValidationError):
            service.get_benchmark_comparison(db, deposit_portfolio, "NOPE", START, END)

    def test_missing_benchmark_close_rejected(self, db, service, deposit_portfolio, oracle):
        oracle.set_closes("SPY", {START: "400", END: "440"})

        with pytest.raises(ValidationError) as exc_info:
            service.get_benchmark_comparison(db, deposit_portfolio, "SPY", START, END)
        assert "SPY" in exc_info.value.message


# =============================================================================
# PRICING FALLBACKS AND METRICS
# =============================================================================

class TestValuation:

    def test_weekend_uses_last_close(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        friday = date(2024, 3, 1)
        sunday = date(2024, 3, 3)
        record(portfolio, "BUY", friday, "10", "AAPL", "100")
        oracle.set_closes("AAPL", {friday: "100", date(2024, 2, 29): "90"})

        metrics = service.get_metrics(db, portfolio, friday, sunday)
        assert metrics.market_value == Decimal("1000")
        assert metrics.priced_at_cost == []

    def test_missing_prices_value_at_cost(self, db, service, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", START, "10", "ZZZZ", "50", commission="5")

        metrics = service.get_metrics(db, portfolio, START, END)

        assert metrics.priced_at_cost == ["ZZZZ"]
        assert metrics.market_value == Decimal("505")
        assert metrics.unrealized_gain == Decimal("0")

    def test_metrics_totals(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", START, "10000")
        record(portfolio, "BUY", START, "100", "AAPL", "50", commission="10")
        record(portfolio, "DIVIDEND", date(2024, 3, 1), "100", "AAPL", "0.25")
        record(portfolio, "SELL", MID, "40", "AAPL", "60", commission="5")
        record(portfolio, "FEE", date(2024, 9, 1), "20")
        record(portfolio, "WITHDRAWAL", date(2024, 10, 1), "1000")
        oracle.set_flat_price("AAPL", "70", START, END)

        metrics = service.get_metrics(db, portfolio, START, END)

        # Sold 40 of 100 shares costing 5010 in total
        assert metrics.realized_gain == Decimal("2400") - Decimal("5") - Decimal("2004")
        assert metrics.dividends == Decimal("25")
        assert metrics.fees == Decimal("35")
        assert metrics.total_withdrawals == Decimal("1000")
        assert metrics.market_value == Decimal("4200")
        assert metrics.total_cost_basis == Decimal("3006")
        # 10000 − 5010 + 25 + 2395 − 20 − 1000
        assert metrics.cash_balance == Decimal("6390")
        assert metrics.total_value == Decimal("10590")
        assert metrics.twr.twr is not None
        assert metrics.mwr.converged is True

    def test_foreign_position_converted_to_base(self, db, service, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "BUY", START, "10", "SAP", "100", currency="EUR")
        oracle.set_closes("SAP", {END: "120"})
        oracle.set_rate("EUR", "USD", "1.1")

        metrics = service.get_metrics(db, portfolio, START, END)

        assert metrics.market_value == Decimal("1320.0")
        assert metrics.total_cost_basis == Decimal("1100.0")
        assert metrics.cash_balance == Decimal("-1100.0")
