# tests/services/test_query.py
"""
Tests for the read-only QueryService.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import delete

from portfolio_tracker.models import Holding
from portfolio_tracker.services.exceptions import HoldingNotFoundError, TaxLotNotFoundError, ValidationError
from portfolio_tracker.services.query import QueryService


@pytest.fixture
def query(ledger) -> QueryService:
    return QueryService(ledger)


@pytest.fixture
def portfolio(make_portfolio, record):
    portfolio = make_portfolio()
    record(portfolio, "BUY", date(2023, 1, 3), "10", "MSFT", "300")
    record(portfolio, "BUY", date(2023, 2, 1), "5", "AAPL", "150")
    record(portfolio, "BUY", date(2023, 3, 1), "5", "AAPL", "160")
    record(portfolio, "BUY", date(2023, 3, 1), "2", "TSLA", "200")
    record(portfolio, "SELL", date(2023, 9, 1), "2", "TSLA", "250")
    record(portfolio, "SELL", date(2024, 2, 1), "6", "AAPL", "180")
    return portfolio


class TestHoldings:

    def test_open_holdings_by_symbol(self, db, query, portfolio):
        holdings = query.holdings(db, portfolio)

        assert [h.symbol for h in holdings] == ["AAPL", "MSFT"]
        aapl = holdings[0]
        assert aapl.quantity == Decimal("4")
        assert aapl.total_cost_basis == Decimal("640")
        assert aapl.avg_cost_price == Decimal("160")

    def test_single_holding_case_insensitive(self, db, query, portfolio):
        assert query.holding(db, portfolio, " msft ").quantity == Decimal("10")

    def test_closed_holding_not_found(self, db, query, portfolio):
        with pytest.raises(HoldingNotFoundError):
            query.holding(db, portfolio, "TSLA")

    def test_stale_ledger_is_rebuilt_before_read(self, db, query, portfolio):
        db.execute(delete(Holding).where(Holding.portfolio_id == portfolio.id))
        portfolio.ledger_stale = True
        db.commit()

        holdings = query.holdings(db, portfolio)

        assert [h.symbol for h in holdings] == ["AAPL", "MSFT"]
        assert portfolio.ledger_stale is False


class TestTaxLots:

    def test_all_open_lots(self, db, query, portfolio):
        lots = query.tax_lots(db, portfolio)

        assert [(lot.symbol, lot.quantity) for lot in lots] == [
            ("AAPL", Decimal("4")),
            ("MSFT", Decimal("10")),
        ]

    def test_lots_for_symbol(self, db, query, portfolio):
        lots = query.tax_lots(db, portfolio, "aapl")
        assert len(lots) == 1
        assert lots[0].purchase_date == date(2023, 3, 1)

    def test_lot_of_other_portfolio_not_found(self, db, query, portfolio, make_portfolio, record):
        other = make_portfolio(name="Other")
        record(other, "BUY", date(2023, 1, 3), "1", "IBM", "100")
        foreign_lot = query.tax_lots(db, other)[0]

        assert query.tax_lot(db, other, foreign_lot.id).symbol == "IBM"
        with pytest.raises(TaxLotNotFoundError):
            query.tax_lot(db, portfolio, foreign_lot.id)


class TestRealizedGains:

    def test_all_gains_by_sale_date(self, db, query, portfolio):
        gains = query.realized_gains(db, portfolio)

        assert [(g.symbol, g.sale_date) for g in gains] == [
            ("TSLA", date(2023, 9, 1)),
            ("AAPL", date(2024, 2, 1)),
            ("AAPL", date(2024, 2, 1)),
        ]
        # 5 @150 then 1 @160 sold at 180
        assert [g.gain for g in gains[1:]] == [Decimal("150"), Decimal("20")]

    def test_filters(self, db, query, portfolio):
        assert len(query.realized_gains(db, portfolio, symbol="aapl")) == 2
        assert len(query.realized_gains(db, portfolio, year=2023)) == 1
        assert query.realized_gains(db, portfolio, symbol="MSFT") == []

    def test_invalid_year(self, db, query, portfolio):
        with pytest.raises(ValidationError):
            query.realized_gains(db, portfolio, year=3000)
