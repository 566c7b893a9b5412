# portfolio_tracker/services/corporate_actions/detector.py
"""
Corporate-action detection.

For every open holding of a portfolio, finds registered corporate actions
on the same symbol dated on or after the earliest open lot's purchase
date, and creates a PENDING PortfolioAction for each one the portfolio
has not seen yet.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import (
    CorporateAction,
    CorporateActionType,
    Holding,
    Portfolio,
    PortfolioAction,
    TaxLot,
)
from portfolio_tracker.services.constants import ZERO
from portfolio_tracker.services.locks import portfolio_locks
from portfolio_tracker.utils.decimal_utils import decimal_to_str

logger = logging.getLogger(__name__)


def describe_action(action: CorporateAction, shares: Decimal) -> str:
    """Reviewer-facing description of what the action will do to this holding."""
    symbol = action.symbol
    if action.action_type == CorporateActionType.SPLIT:
        if action.ratio is not None:
            return f"Stock split {decimal_to_str(action.ratio)} for {symbol}. Your {decimal_to_str(shares)} shares will be adjusted."
        return f"Stock split for {symbol}"
    if action.action_type == CorporateActionType.DIVIDEND:
        if action.amount is not None:
            total = action.amount * shares
            return f"Dividend of {decimal_to_str(action.amount)} per share ({decimal_to_str(total)} total) for {symbol}"
        return f"Dividend for {symbol}"
    if action.action_type == CorporateActionType.MERGER:
        if action.new_symbol:
            return f"Merger: {symbol} is being acquired. Shares will be converted to {action.new_symbol}"
        return f"Merger for {symbol}"
    if action.action_type == CorporateActionType.TICKER_CHANGE:
        if action.new_symbol:
            return f"Ticker change: {symbol} is changing to {action.new_symbol}"
        return f"Ticker change for {symbol}"
    if action.action_type == CorporateActionType.SPINOFF:
        if action.ratio is not None and action.new_symbol:
            return (
                f"Spinoff: You will receive {decimal_to_str(action.ratio)} shares of {action.new_symbol} "
                f"for each of your {symbol} shares ({decimal_to_str(action.ratio * shares)} total)"
            )
        return f"Spinoff for {symbol}"
    return f"Corporate action for {symbol}"


class CorporateActionDetector:

    def detect(self, db: Session, portfolio: Portfolio) -> list[PortfolioAction]:
        """
        Create PENDING actions for this portfolio's open holdings.

        Returns:
            The newly created actions (existing pairs are never duplicated)
        """
        with portfolio_locks.write(portfolio.id):
            holdings = db.scalars(
                select(Holding).where(Holding.portfolio_id == portfolio.id, Holding.quantity > ZERO)
            ).all()

            seen = set(db.scalars(
                select(PortfolioAction.corporate_action_id).where(PortfolioAction.portfolio_id == portfolio.id)
            ).all())

            created: list[PortfolioAction] = []
            for holding in holdings:
                earliest = db.scalar(
                    select(func.min(TaxLot.purchase_date)).where(
                        TaxLot.portfolio_id == portfolio.id,
                        TaxLot.symbol == holding.symbol,
                    )
                )
                if earliest is None:
                    continue

                candidates = db.scalars(
                    select(CorporateAction)
                    .where(CorporateAction.symbol == holding.symbol, CorporateAction.action_date >= earliest)
                    .order_by(CorporateAction.action_date, CorporateAction.id)
                ).all()

                for corporate_action in candidates:
                    if corporate_action.id in seen:
                        continue
                    action = PortfolioAction(
                        portfolio_id=portfolio.id,
                        corporate_action_id=corporate_action.id,
                        affected_symbol=holding.symbol,
                        shares_affected=holding.quantity,
                        description=describe_action(corporate_action, holding.quantity),
                    )
                    db.add(action)
                    seen.add(corporate_action.id)
                    created.append(action)

            if created:
                db.commit()
                for action in created:
                    db.refresh(action)
                logger.info(f"Detected {len(created)} corporate action(s) for portfolio {portfolio.id}")
            return created

    def detect_all(self, db: Session) -> int:
        """Run detection for every portfolio. One portfolio's failure does not stop the run."""
        total = 0
        for portfolio in db.scalars(select(Portfolio).order_by(Portfolio.id)).all():
            portfolio_id = portfolio.id
            try:
                total += len(self.detect(db, portfolio))
            except Exception as e:
                logger.error(f"Detection failed for portfolio {portfolio_id}: {e}", exc_info=True)
                db.rollback()
        return total
