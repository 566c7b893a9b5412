# tests/services/test_portfolio_service.py
"""
Tests for PortfolioService: lifecycle, ownership and the method lock.
"""

from datetime import date

import pytest

from portfolio_tracker.models import CostBasisMethod, Portfolio
from portfolio_tracker.services.exceptions import (
    AuthorizationError,
    CostBasisMethodLockedError,
    InvalidCostBasisMethodError,
    PortfolioNotEmptyError,
    PortfolioNotFoundError,
    ValidationError,
)
from portfolio_tracker.services.portfolios import PortfolioService


@pytest.fixture
def service() -> PortfolioService:
    return PortfolioService()


class TestCreate:

    def test_create_defaults(self, db, service, principal_id):
        portfolio = service.create(db, principal_id, "  Retirement  ")

        assert portfolio.id is not None
        assert portfolio.name == "Retirement"
        assert portfolio.base_currency == "USD"
        assert portfolio.cost_basis_method == CostBasisMethod.FIFO
        assert portfolio.ledger_stale is False

    def test_method_from_string(self, db, service, principal_id):
        portfolio = service.create(db, principal_id, "Trading", "eur", "lifo")

        assert portfolio.base_currency == "EUR"
        assert portfolio.cost_basis_method == CostBasisMethod.LIFO

    def test_blank_name(self, db, service, principal_id):
        with pytest.raises(ValidationError):
            service.create(db, principal_id, "   ")

    def test_unknown_method(self, db, service, principal_id):
        with pytest.raises(InvalidCostBasisMethodError):
            service.create(db, principal_id, "X", cost_basis_method="AVERAGE")


class TestOwnership:

    def test_list_only_own(self, db, service, make_portfolio, principal_id):
        mine = make_portfolio(name="Mine")
        make_portfolio(name="Theirs", owner_id="someone-else")

        assert [p.id for p in service.list_for_owner(db, principal_id)] == [mine.id]

    def test_get_owned(self, db, service, make_portfolio, principal_id):
        portfolio = make_portfolio()
        assert service.get_owned(db, portfolio.id, principal_id).id == portfolio.id

    def test_other_owner_forbidden(self, db, service, make_portfolio):
        portfolio = make_portfolio()
        with pytest.raises(AuthorizationError) as exc_info:
            service.get_owned(db, portfolio.id, "someone-else")
        assert exc_info.value.code == "FORBIDDEN"

    def test_missing_portfolio(self, db, service, principal_id):
        with pytest.raises(PortfolioNotFoundError):
            service.get_owned(db, 424242, principal_id)


class TestUpdate:

    def test_rename_and_switch_method_before_selling(self, db, service, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")

        updated = service.update(db, portfolio, name="Renamed", cost_basis_method=CostBasisMethod.LIFO)

        assert updated.name == "Renamed"
        assert updated.cost_basis_method == CostBasisMethod.LIFO

    def test_method_locked_after_sell(self, db, service, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        record(portfolio, "SELL", date(2024, 2, 1), "1", "AAPL", "110")

        with pytest.raises(CostBasisMethodLockedError):
            service.update(db, portfolio, cost_basis_method="LIFO")

    def test_same_method_after_sell_is_allowed(self, db, service, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        record(portfolio, "SELL", date(2024, 2, 1), "1", "AAPL", "110")

        assert service.update(db, portfolio, cost_basis_method="FIFO").cost_basis_method == CostBasisMethod.FIFO


class TestDelete:

    def test_delete_empty(self, db, service, make_portfolio):
        portfolio = make_portfolio()
        portfolio_id = portfolio.id

        service.delete(db, portfolio)

        assert db.get(Portfolio, portfolio_id) is None

    def test_delete_with_history_requires_force(self, db, service, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", date(2024, 1, 2), "100")

        with pytest.raises(PortfolioNotEmptyError):
            service.delete(db, portfolio)

        portfolio_id = portfolio.id
        service.delete(db, portfolio, force=True)
        assert db.get(Portfolio, portfolio_id) is None
        assert service.transaction_count(db, portfolio_id) == 0
