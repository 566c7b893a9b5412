# tests/services/test_tax.py
"""
Tests for TaxService: sale previews, loss harvesting and tax reports.
"""

from datetime import date
from decimal import Decimal

import pytest

from portfolio_tracker.models import CostBasisMethod
from portfolio_tracker.services.exceptions import (
    InsufficientSharesError,
    InvalidCostBasisMethodError,
    InvalidLotSelectionError,
    InvalidThresholdError,
    ValidationError,
)
from portfolio_tracker.services.query import QueryService
from portfolio_tracker.services.tax import TaxService


@pytest.fixture
def tax(oracle, ledger) -> TaxService:
    return TaxService(oracle, QueryService(ledger))


@pytest.fixture
def two_lots(make_portfolio, record):
    portfolio = make_portfolio()
    record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
    record(portfolio, "BUY", date(2024, 3, 1), "10", "AAPL", "120")
    return portfolio


# =============================================================================
# PREVIEW
# =============================================================================

class TestPreviewAllocation:

    def test_fifo_preview(self, db, tax, two_lots):
        result = tax.preview_allocation(
            db, two_lots, "aapl", Decimal("15"), sell_date=date(2024, 6, 1), price=Decimal("130")
        )

        assert result.symbol == "AAPL"
        assert result.method == CostBasisMethod.FIFO
        assert [a.quantity for a in result.allocations] == [Decimal("10"), Decimal("5")]
        assert [a.cost_basis for a in result.allocations] == [Decimal("1000"), Decimal("600")]
        assert [a.gain for a in result.allocations] == [Decimal("300"), Decimal("50")]
        assert result.total_cost_basis == Decimal("1600")

    def test_method_override(self, db, tax, two_lots):
        result = tax.preview_allocation(db, two_lots, "AAPL", Decimal("15"), method="LIFO")

        assert result.method == CostBasisMethod.LIFO
        assert [a.purchase_date for a in result.allocations] == [date(2024, 3, 1), date(2024, 1, 2)]
        assert result.total_cost_basis == Decimal("1700")
        assert result.allocations[0].proceeds is None

    def test_preview_writes_nothing(self, db, tax, two_lots):
        before = [(lot.id, lot.quantity) for lot in QueryService().tax_lots(db, two_lots)]

        tax.preview_allocation(db, two_lots, "AAPL", Decimal("12"))

        assert [(lot.id, lot.quantity) for lot in QueryService().tax_lots(db, two_lots)] == before

    def test_long_term_flag(self, db, tax, two_lots):
        result = tax.preview_allocation(db, two_lots, "AAPL", Decimal("20"), sell_date=date(2025, 1, 2))
        assert [a.is_long_term for a in result.allocations] == [True, False]

    def test_specific_lot_selection(self, db, tax, two_lots):
        second = QueryService().tax_lots(db, two_lots)[1]

        result = tax.preview_allocation(
            db, two_lots, "AAPL", Decimal("3"), method="SPECIFIC_LOT",
            selections=[(second.id, Decimal("3"))],
        )

        assert len(result.allocations) == 1
        assert result.allocations[0].lot_id == second.id
        assert result.total_cost_basis == Decimal("360")

    def test_selections_need_specific_lot(self, db, tax, two_lots):
        lot = QueryService().tax_lots(db, two_lots)[0]
        with pytest.raises(InvalidCostBasisMethodError):
            tax.preview_allocation(db, two_lots, "AAPL", Decimal("1"), selections=[(lot.id, Decimal("1"))])

    def test_unknown_lot_rejected(self, db, tax, two_lots):
        with pytest.raises(InvalidLotSelectionError):
            tax.preview_allocation(
                db, two_lots, "AAPL", Decimal("1"), method="SPECIFIC_LOT", selections=[(99999, Decimal("1"))]
            )

    def test_insufficient_shares(self, db, tax, two_lots):
        with pytest.raises(InsufficientSharesError) as exc_info:
            tax.preview_allocation(db, two_lots, "AAPL", Decimal("21"))
        assert exc_info.value.available == Decimal("20")

    def test_unknown_method(self, db, tax, two_lots):
        with pytest.raises(InvalidCostBasisMethodError):
            tax.preview_allocation(db, two_lots, "AAPL", Decimal("1"), method="HIFO")

    def test_negative_price(self, db, tax, two_lots):
        with pytest.raises(ValidationError):
            tax.preview_allocation(db, two_lots, "AAPL", Decimal("1"), price=Decimal("-1"))


# =============================================================================
# HARVEST
# =============================================================================

class TestHarvestOpportunities:

    @pytest.fixture
    def losers(self, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        record(portfolio, "BUY", date(2024, 1, 2), "5", "MSFT", "200")
        record(portfolio, "BUY", date(2024, 1, 2), "2", "TSLA", "100")
        record(portfolio, "BUY", date(2024, 1, 2), "1", "ZZZZ", "10")
        oracle.set_quote("AAPL", "90")
        oracle.set_quote("MSFT", "195")
        oracle.set_quote("TSLA", "50")
        return portfolio

    def test_worst_first_and_default_threshold(self, db, tax, losers):
        opportunities = tax.harvest_opportunities(db, losers)

        assert [o.symbol for o in opportunities] == ["TSLA", "AAPL"]
        aapl = opportunities[1]
        assert aapl.current_value == Decimal("900")
        assert aapl.unrealized_loss == Decimal("-100")
        assert aapl.loss_percent == Decimal("-10")

    def test_looser_threshold(self, db, tax, losers):
        opportunities = tax.harvest_opportunities(db, losers, Decimal("-1"))
        assert [o.symbol for o in opportunities] == ["TSLA", "AAPL", "MSFT"]

    def test_threshold_is_strict(self, db, tax, losers):
        opportunities = tax.harvest_opportunities(db, losers, Decimal("-10"))
        assert [o.symbol for o in opportunities] == ["TSLA"]

    @pytest.mark.parametrize("threshold", ["5", "-100.5"])
    def test_threshold_out_of_range(self, db, tax, losers, threshold):
        with pytest.raises(InvalidThresholdError) as exc_info:
            tax.harvest_opportunities(db, losers, Decimal(threshold))
        assert exc_info.value.code == "INVALID_THRESHOLD"

    def test_gains_not_listed(self, db, tax, make_portfolio, record, oracle):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "NVDA", "100")
        oracle.set_quote("NVDA", "150")

        assert tax.harvest_opportunities(db, portfolio) == []


# =============================================================================
# TAX REPORT
# =============================================================================

class TestTaxReport:

    @pytest.fixture
    def sold(self, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2023, 1, 3), "10", "AAPL", "100")
        record(portfolio, "SELL", date(2023, 6, 1), "4", "AAPL", "110")
        record(portfolio, "SELL", date(2024, 2, 1), "3", "AAPL", "150")
        return portfolio

    def test_short_term_year(self, db, tax, sold):
        report = tax.tax_report(db, sold, 2023)

        assert len(report.short_term_gains) == 1
        assert report.long_term_gains == []
        assert report.total_short_term_gain == Decimal("40")
        assert report.total_gain == Decimal("40")

    def test_long_term_year(self, db, tax, sold):
        report = tax.tax_report(db, sold, 2024)

        assert report.short_term_gains == []
        assert report.total_long_term_gain == Decimal("150")
        assert report.total_gain == Decimal("150")

    def test_empty_year(self, db, tax, sold):
        assert tax.tax_report(db, sold, 2022).total_gain == Decimal("0")

    @pytest.mark.parametrize("year", [1899, 2101])
    def test_year_out_of_range(self, db, tax, sold, year):
        with pytest.raises(ValidationError):
            tax.tax_report(db, sold, year)
