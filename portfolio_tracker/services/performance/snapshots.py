# portfolio_tracker/services/performance/snapshots.py
"""
Daily performance snapshots.

One PerformanceSnapshot per (portfolio, day), valued with that day's
closing prices:

    total_value      = Σ position quantity × close (cost basis where no close)
    total_cost_basis = Σ open lot cost basis
    total_return     = total_value − total_cost_basis
    day_change       = total_value − previous snapshot's total_value

Snapshots are immutable: creating one for a day that already has one
returns the stored row unchanged, so the scheduler and on-demand requests
can both run without duplicates or rewrites.
"""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import PerformanceSnapshot, Portfolio
from portfolio_tracker.services.constants import (
    DEFAULT_SNAPSHOT_LIMIT,
    HUNDRED,
    MAX_SNAPSHOT_LIMIT,
    ZERO,
)
from portfolio_tracker.services.exceptions import (
    InvalidDateRangeError,
    SnapshotNotFoundError,
    ValidationError,
)
from portfolio_tracker.services.ledger.ledger import load_applied_actions, load_transactions
from portfolio_tracker.services.locks import portfolio_locks
from portfolio_tracker.services.performance.timeline import PortfolioTimeline
from portfolio_tracker.services.protocols import PriceOracleProtocol
from portfolio_tracker.utils.date_utils import utc_today
from portfolio_tracker.utils.decimal_utils import safe_divide

logger = logging.getLogger(__name__)


class SnapshotService:

    def __init__(self, oracle: PriceOracleProtocol) -> None:
        self._oracle = oracle

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_snapshot(self, db: Session, portfolio: Portfolio, as_of: date | None = None) -> PerformanceSnapshot:
        """
        Value the portfolio at the close of `as_of` (default: today UTC) and persist it.

        An existing snapshot for (portfolio, as_of) is returned as stored.

        Raises:
            ValidationError: as_of is in the future
        """
        as_of = as_of or utc_today()
        if as_of > utc_today():
            raise ValidationError(f"Cannot snapshot a future date: {as_of}", field="as_of")

        with portfolio_locks.write(portfolio.id):
            existing = db.scalars(
                select(PerformanceSnapshot).where(
                    PerformanceSnapshot.portfolio_id == portfolio.id,
                    PerformanceSnapshot.date == as_of,
                )
            ).first()
            if existing is not None:
                logger.debug(f"Snapshot for portfolio {portfolio.id} on {as_of} already exists (#{existing.id})")
                return existing

            try:
                transactions = load_transactions(db, portfolio.id)
                actions = load_applied_actions(db, portfolio.id)
                timeline = PortfolioTimeline(portfolio, transactions, actions, self._oracle, as_of, as_of)
                point = timeline.value_at([as_of])[as_of]

                previous = db.scalars(
                    select(PerformanceSnapshot)
                    .where(
                        PerformanceSnapshot.portfolio_id == portfolio.id,
                        PerformanceSnapshot.date < as_of,
                    )
                    .order_by(PerformanceSnapshot.date.desc())
                    .limit(1)
                ).first()

                snapshot = PerformanceSnapshot(portfolio_id=portfolio.id, date=as_of)
                db.add(snapshot)

                total_return = point.market_value - point.cost_basis
                return_pct = safe_divide(total_return, point.cost_basis)

                snapshot.total_value = point.market_value
                snapshot.total_cost_basis = point.cost_basis
                snapshot.total_return = total_return
                snapshot.total_return_pct = return_pct * HUNDRED if return_pct is not None else None
                snapshot.cash_flow_of_day = timeline.external_flows.get(as_of, ZERO)
                snapshot.priced_at_cost = point.priced_at_cost or None

                if previous is None:
                    snapshot.day_change = None
                    snapshot.day_change_pct = None
                else:
                    change = point.market_value - previous.total_value
                    change_pct = safe_divide(change, previous.total_value)
                    snapshot.day_change = change
                    snapshot.day_change_pct = change_pct * HUNDRED if change_pct is not None else None

                db.commit()
                db.refresh(snapshot)
            except Exception:
                db.rollback()
                raise

        logger.info(f"Snapshot for portfolio {portfolio.id} on {as_of}: value={snapshot.total_value}")
        return snapshot

    def snapshot_all(self, db: Session, as_of: date | None = None) -> int:
        """Snapshot every portfolio. Failures are logged per portfolio. Returns the number written."""
        as_of = as_of or utc_today()
        portfolios = db.scalars(select(Portfolio).order_by(Portfolio.id)).all()
        written = 0
        for portfolio in portfolios:
            try:
                self.create_snapshot(db, portfolio, as_of)
                written += 1
            except Exception as e:
                logger.error(f"Snapshot failed for portfolio {portfolio.id} on {as_of}: {e}", exc_info=True)
        logger.info(f"Snapshotted {written}/{len(portfolios)} portfolios for {as_of}")
        return written

    # =========================================================================
    # READS
    # =========================================================================

    def list_snapshots(
            self,
            db: Session,
            portfolio_id: int,
            limit: int = DEFAULT_SNAPSHOT_LIMIT,
            offset: int = 0,
    ) -> tuple[list[PerformanceSnapshot], int]:
        """Most recent first. Returns (page, total)."""
        if limit < 1 or limit > MAX_SNAPSHOT_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_SNAPSHOT_LIMIT}", field="limit")
        if offset < 0:
            raise ValidationError("offset must not be negative", field="offset")

        total = db.scalar(
            select(func.count()).select_from(PerformanceSnapshot).where(PerformanceSnapshot.portfolio_id == portfolio_id)
        ) or 0
        items = db.scalars(
            select(PerformanceSnapshot)
            .where(PerformanceSnapshot.portfolio_id == portfolio_id)
            .order_by(PerformanceSnapshot.date.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return list(items), total

    def get_latest(self, db: Session, portfolio_id: int) -> PerformanceSnapshot:
        snapshot = db.scalars(
            select(PerformanceSnapshot)
            .where(PerformanceSnapshot.portfolio_id == portfolio_id)
            .order_by(PerformanceSnapshot.date.desc())
            .limit(1)
        ).first()
        if snapshot is None:
            raise SnapshotNotFoundError(portfolio_id)
        return snapshot

    def get_range(
            self,
            db: Session,
            portfolio_id: int,
            start_date: date,
            end_date: date,
    ) -> list[PerformanceSnapshot]:
        """Snapshots dated within [start_date, end_date], oldest first."""
        if start_date > end_date:
            raise InvalidDateRangeError(start_date, end_date)
        return list(db.scalars(
            select(PerformanceSnapshot)
            .where(
                PerformanceSnapshot.portfolio_id == portfolio_id,
                PerformanceSnapshot.date >= start_date,
                PerformanceSnapshot.date <= end_date,
            )
            .order_by(PerformanceSnapshot.date)
        ).all())
