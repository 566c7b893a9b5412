# portfolio_tracker/services/portfolios.py
"""
Portfolio lifecycle: create, list, update, delete.

The cost-basis method is fixed once the portfolio has sold anything;
a portfolio with recorded events is only deleted when forced, which
cascades to every dependent row.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import CostBasisMethod, Portfolio, Transaction, TransactionType
from portfolio_tracker.services.exceptions import (
    AuthorizationError,
    CostBasisMethodLockedError,
    PortfolioNotEmptyError,
    PortfolioNotFoundError,
    ValidationError,
)
from portfolio_tracker.services.ledger.allocator import parse_method
from portfolio_tracker.services.locks import portfolio_locks

logger = logging.getLogger(__name__)


class PortfolioService:

    def create(
            self,
            db: Session,
            owner_id: str,
            name: str,
            base_currency: str = "USD",
            cost_basis_method: CostBasisMethod | str = CostBasisMethod.FIFO,
    ) -> Portfolio:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Portfolio name is required", field="name")

        portfolio = Portfolio(
            owner_id=owner_id,
            name=name,
            base_currency=base_currency.upper(),
            cost_basis_method=parse_method(cost_basis_method),
        )
        db.add(portfolio)
        db.commit()
        db.refresh(portfolio)
        logger.info(f"Created portfolio {portfolio.id} ({portfolio.cost_basis_method.value}) for {owner_id}")
        return portfolio

    def list_for_owner(self, db: Session, owner_id: str) -> list[Portfolio]:
        query = select(Portfolio).where(Portfolio.owner_id == owner_id).order_by(Portfolio.id)
        return list(db.scalars(query).all())

    def get_owned(self, db: Session, portfolio_id: int, principal_id: str) -> Portfolio:
        """
        Load a portfolio the principal owns.

        Raises:
            PortfolioNotFoundError: No such portfolio
            AuthorizationError: Owned by someone else
        """
        portfolio = db.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)
        if portfolio.owner_id != principal_id:
            raise AuthorizationError("Portfolio", portfolio_id)
        return portfolio

    def update(
            self,
            db: Session,
            portfolio: Portfolio,
            name: str | None = None,
            base_currency: str | None = None,
            cost_basis_method: CostBasisMethod | str | None = None,
    ) -> Portfolio:
        with portfolio_locks.write(portfolio.id):
            if cost_basis_method is not None:
                method = parse_method(cost_basis_method)
                if method != portfolio.cost_basis_method:
                    if self.has_sells(db, portfolio.id):
                        raise CostBasisMethodLockedError(portfolio.id)
                    portfolio.cost_basis_method = method

            if name is not None:
                if not name.strip():
                    raise ValidationError("Portfolio name is required", field="name")
                portfolio.name = name.strip()
            if base_currency is not None:
                portfolio.base_currency = base_currency.upper()

            db.commit()
            db.refresh(portfolio)
            return portfolio

    def delete(self, db: Session, portfolio: Portfolio, force: bool = False) -> None:
        """
        Delete a portfolio and everything it owns.

        Raises:
            PortfolioNotEmptyError: It has transactions and force is False
        """
        portfolio_id = portfolio.id
        with portfolio_locks.write(portfolio_id):
            if not force and self.transaction_count(db, portfolio_id) > 0:
                raise PortfolioNotEmptyError(portfolio_id)
            db.delete(portfolio)
            db.commit()
        portfolio_locks.discard(portfolio_id)
        logger.info(f"Deleted portfolio {portfolio_id}")

    def has_sells(self, db: Session, portfolio_id: int) -> bool:
        count = db.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.portfolio_id == portfolio_id,
                Transaction.transaction_type == TransactionType.SELL,
            )
        )
        return bool(count)

    def transaction_count(self, db: Session, portfolio_id: int) -> int:
        return db.scalar(select(func.count(Transaction.id)).where(Transaction.portfolio_id == portfolio_id)) or 0
