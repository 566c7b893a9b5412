# portfolio_tracker/services/corporate_actions/workflow.py
"""
Corporate-action registry and review workflow.

State machine of a PortfolioAction:

    PENDING  ─approve─→ APPROVED ─apply─→ APPLIED
    PENDING  ─reject──→ REJECTED
    APPROVED ─apply───→ APPLIED          (retry after a failed application)

Applying flips the status and re-derives the ledger in one database
transaction. A failed application rolls that transaction back, records
the failure on the action and leaves it APPROVED. Applying an APPLIED
action is a no-op.

Application rules:
    SPLIT(r)          lot quantity × r, cost basis unchanged
    MERGER(new, r)    lot symbol → new, quantity × r, cost basis and purchase date kept
    TICKER_CHANGE     MERGER with r = 1
    SPINOFF(new, r, c)  each lot of the symbol derives a lot of new: quantity × r,
                      c of the parent cost basis, parent purchase date; total cost unchanged
    DIVIDEND(a)       synthetic DIVIDEND transaction of a × shares held on the action date
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portfolio_tracker.models import (
    ActionStatus,
    CorporateAction,
    CorporateActionType,
    Portfolio,
    PortfolioAction,
    Transaction,
    TransactionType,
)
from portfolio_tracker.services.constants import SPINOFF_COST_ALLOCATION, ZERO
from portfolio_tracker.services.events import EventStore, TransactionInput
from portfolio_tracker.services.exceptions import (
    ActionNotApprovedError,
    ActionNotFoundError,
    ActionNotPendingError,
    AuthorizationError,
    CorporateActionExistsError,
    CorporateActionNotFoundError,
    ServiceError,
    ValidationError,
)
from portfolio_tracker.services.ledger import TaxLotLedger, open_lots_as_of
from portfolio_tracker.services.locks import portfolio_locks
from portfolio_tracker.utils.date_utils import utc_now
from portfolio_tracker.utils.decimal_utils import decimal_to_str

logger = logging.getLogger(__name__)


# =============================================================================
# STATE MACHINE
# =============================================================================

TRANSITIONS: dict[ActionStatus, dict[str, ActionStatus]] = {
    ActionStatus.PENDING: {"approve": ActionStatus.APPROVED, "reject": ActionStatus.REJECTED},
    ActionStatus.APPROVED: {"apply": ActionStatus.APPLIED},
    ActionStatus.REJECTED: {},
    ActionStatus.APPLIED: {},
}


def next_status(action_id: int, current: ActionStatus, event: str) -> ActionStatus:
    """
    Target status for `event` from `current`.

    Raises:
        ActionNotPendingError: approve/reject from anything but PENDING
        ActionNotApprovedError: apply from anything but APPROVED
    """
    target = TRANSITIONS[current].get(event)
    if target is not None:
        return target
    if event == "apply":
        raise ActionNotApprovedError(action_id, current.value)
    raise ActionNotPendingError(action_id, current.value)


# =============================================================================
# INPUT
# =============================================================================

@dataclass
class CorporateActionInput:
    symbol: str
    action_type: CorporateActionType
    action_date: date
    ratio: Decimal | None = None
    amount: Decimal | None = None
    new_symbol: str | None = None
    cost_allocation: Decimal | None = None
    currency: str | None = None
    description: str | None = None


def validate_corporate_action(data: CorporateActionInput) -> None:
    """
    SPLIT/MERGER/SPINOFF need ratio > 0, DIVIDEND needs amount > 0,
    MERGER/TICKER_CHANGE/SPINOFF need new_symbol, and a SPINOFF cost
    allocation must lie in [0, 1].
    """
    action_type = data.action_type
    if not data.symbol or not data.symbol.strip():
        raise ValidationError("symbol is required", field="symbol")
    if action_type in (CorporateActionType.SPLIT, CorporateActionType.MERGER, CorporateActionType.SPINOFF):
        if data.ratio is None or data.ratio <= ZERO:
            raise ValidationError(f"{action_type.value} requires a positive ratio", field="ratio")
    if action_type == CorporateActionType.DIVIDEND:
        if data.amount is None or data.amount <= ZERO:
            raise ValidationError("DIVIDEND requires a positive amount", field="amount")
    if action_type in (CorporateActionType.MERGER, CorporateActionType.TICKER_CHANGE, CorporateActionType.SPINOFF):
        if not data.new_symbol or not data.new_symbol.strip():
            raise ValidationError(f"{action_type.value} requires new_symbol", field="new_symbol")
        if data.new_symbol.strip().upper() == data.symbol.strip().upper():
            raise ValidationError("new_symbol must differ from symbol", field="new_symbol")
    if action_type == CorporateActionType.SPINOFF and data.cost_allocation is not None:
        if not ZERO <= data.cost_allocation <= Decimal("1"):
            raise ValidationError("cost_allocation must be between 0 and 1", field="cost_allocation")


# =============================================================================
# WORKFLOW
# =============================================================================

class CorporateActionWorkflow:
    """
    Registers global corporate actions and drives per-portfolio review.

    Args:
        admin_principal_ids: Principals allowed to register actions; empty allows any
    """

    def __init__(
            self,
            admin_principal_ids: list[str] | None = None,
            ledger: TaxLotLedger | None = None,
            event_store: EventStore | None = None,
    ) -> None:
        self._admins = set(admin_principal_ids or [])
        self._ledger = ledger or TaxLotLedger()
        self._events = event_store or EventStore(self._ledger)

    # -------------------------------------------------------------------------
    # Global registry
    # -------------------------------------------------------------------------

    def register(self, db: Session, principal_id: str, data: CorporateActionInput) -> CorporateAction:
        """
        Record a corporate action as global reference data.

        Raises:
            AuthorizationError: Principal is not an administrator
            ValidationError: Missing ratio, amount or new_symbol
            CorporateActionExistsError: Same (symbol, type, date) already registered
        """
        if self._admins and principal_id not in self._admins:
            raise AuthorizationError(
                "CorporateAction",
                data.symbol,
                message="Only administrators can register corporate actions",
            )
        validate_corporate_action(data)

        symbol = data.symbol.strip().upper()
        existing = db.scalar(
            select(CorporateAction).where(
                CorporateAction.symbol == symbol,
                CorporateAction.action_type == data.action_type,
                CorporateAction.action_date == data.action_date,
            )
        )
        if existing is not None:
            raise CorporateActionExistsError(symbol, data.action_type.value, data.action_date)

        ratio = Decimal("1") if data.action_type == CorporateActionType.TICKER_CHANGE else data.ratio
        cost_allocation = None
        if data.action_type == CorporateActionType.SPINOFF:
            cost_allocation = SPINOFF_COST_ALLOCATION if data.cost_allocation is None else data.cost_allocation
        action = CorporateAction(
            symbol=symbol,
            action_type=data.action_type,
            action_date=data.action_date,
            ratio=ratio,
            amount=data.amount,
            new_symbol=data.new_symbol.strip().upper() if data.new_symbol else None,
            cost_allocation=cost_allocation,
            currency=data.currency.upper() if data.currency else None,
            description=data.description,
        )
        db.add(action)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise CorporateActionExistsError(symbol, data.action_type.value, data.action_date)
        db.refresh(action)
        logger.info(f"Registered {action.action_type.value} for {symbol} on {action.action_date}")
        return action

    def list_corporate_actions(self, db: Session, symbol: str | None = None) -> list[CorporateAction]:
        query = select(CorporateAction).order_by(CorporateAction.action_date, CorporateAction.id)
        if symbol:
            query = query.where(CorporateAction.symbol == symbol.strip().upper())
        return list(db.scalars(query).all())

    def get_corporate_action(self, db: Session, corporate_action_id: int) -> CorporateAction:
        action = db.get(CorporateAction, corporate_action_id)
        if action is None:
            raise CorporateActionNotFoundError(corporate_action_id)
        return action

    # -------------------------------------------------------------------------
    # Portfolio review
    # -------------------------------------------------------------------------

    def list_actions(
            self,
            db: Session,
            portfolio_id: int,
            status: ActionStatus | None = None,
    ) -> list[PortfolioAction]:
        query = select(PortfolioAction).where(PortfolioAction.portfolio_id == portfolio_id)
        if status is not None:
            query = query.where(PortfolioAction.status == status)
        query = query.order_by(PortfolioAction.detected_at, PortfolioAction.id)
        return list(db.scalars(query).all())

    def get_action(self, db: Session, portfolio_id: int, action_id: int) -> PortfolioAction:
        action = db.get(PortfolioAction, action_id)
        if action is None or action.portfolio_id != portfolio_id:
            raise ActionNotFoundError(action_id)
        return action

    def approve(
            self,
            db: Session,
            portfolio: Portfolio,
            action_id: int,
            reviewer_id: str,
            notes: str | None = None,
    ) -> PortfolioAction:
        """
        Approve a PENDING action and try to apply it right away.

        The approval is committed first. If application then fails the
        action stays APPROVED with apply_error set, and can be retried
        with apply().
        """
        with portfolio_locks.write(portfolio.id):
            action = self.get_action(db, portfolio.id, action_id)
            action.status = next_status(action.id, action.status, "approve")
            action.reviewed_at = utc_now()
            action.reviewer_id = reviewer_id
            action.notes = notes
            db.commit()
            logger.info(f"Action {action.id} approved by {reviewer_id}")

            try:
                self._apply(db, portfolio, action)
            except ServiceError as e:
                logger.warning(f"Action {action_id} approved but not applied: {e}")

            db.refresh(action)
            return action

    def reject(
            self,
            db: Session,
            portfolio: Portfolio,
            action_id: int,
            reviewer_id: str,
            reason: str | None = None,
    ) -> PortfolioAction:
        with portfolio_locks.write(portfolio.id):
            action = self.get_action(db, portfolio.id, action_id)
            action.status = next_status(action.id, action.status, "reject")
            action.reviewed_at = utc_now()
            action.reviewer_id = reviewer_id
            action.notes = reason
            db.commit()
            db.refresh(action)
            logger.info(f"Action {action.id} rejected by {reviewer_id}")
            return action

    def apply(self, db: Session, portfolio: Portfolio, action_id: int) -> PortfolioAction:
        """
        Apply an APPROVED action. Applying an APPLIED action changes nothing.

        Raises:
            ActionNotApprovedError: Action is PENDING or REJECTED
            ServiceError: Application failed; the action stays APPROVED
        """
        with portfolio_locks.write(portfolio.id):
            action = self.get_action(db, portfolio.id, action_id)
            if action.status == ActionStatus.APPLIED:
                logger.info(f"Action {action.id} already applied")
                return action
            next_status(action.id, action.status, "apply")

            self._apply(db, portfolio, action)
            db.refresh(action)
            return action

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _apply(self, db: Session, portfolio: Portfolio, action: PortfolioAction) -> None:
        """Flip to APPLIED and re-derive in one unit; on failure record it and re-raise."""
        action_id = action.id
        try:
            corporate_action = action.corporate_action
            if corporate_action.action_type == CorporateActionType.DIVIDEND:
                self._emit_dividend(db, portfolio, action, corporate_action)

            action.status = ActionStatus.APPLIED
            action.applied_at = utc_now()
            action.apply_error = None
            db.flush()

            if corporate_action.action_type != CorporateActionType.DIVIDEND:
                self._ledger.rebuild(db, portfolio)
            db.commit()
        except ServiceError as e:
            db.rollback()
            failed = db.get(PortfolioAction, action_id)
            failed.apply_error = str(e)[:1000]
            db.commit()
            logger.error(f"Applying action {action_id} failed: {e}")
            raise

        logger.info(
            f"Applied {corporate_action.action_type.value} for {corporate_action.symbol} "
            f"to portfolio {portfolio.id} (action {action_id})"
        )

    def _emit_dividend(
            self,
            db: Session,
            portfolio: Portfolio,
            action: PortfolioAction,
            corporate_action: CorporateAction,
    ) -> Transaction | None:
        """Synthetic DIVIDEND transaction; at most one per action."""
        existing = db.scalar(
            select(Transaction).where(
                Transaction.portfolio_id == portfolio.id,
                Transaction.portfolio_action_id == action.id,
            )
        )
        if existing is not None:
            return existing

        shares = open_lots_as_of(db, portfolio, corporate_action.action_date).open_quantity(corporate_action.symbol)
        if shares <= ZERO:
            logger.info(f"No {corporate_action.symbol} held on {corporate_action.action_date}; dividend has no effect")
            return None

        return self._events.stage(
            db,
            portfolio,
            TransactionInput(
                transaction_type=TransactionType.DIVIDEND,
                symbol=corporate_action.symbol,
                date=corporate_action.action_date,
                quantity=shares,
                price=corporate_action.amount,
                currency=corporate_action.currency or portfolio.base_currency,
                notes=f"Cash dividend: {decimal_to_str(corporate_action.amount)}",
            ),
            portfolio_action_id=action.id,
        )
