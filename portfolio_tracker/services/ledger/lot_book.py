# portfolio_tracker/services/ledger/lot_book.py
"""
In-memory lot book for one portfolio.

Applies transactions and applied corporate actions, in event order, to a
set of open lots. The book never touches the database: the persistent
ledger, the import simulator and the performance timeline all drive one
and read the result back.

Event order:
    (date, transactions before corporate actions, created_at, id)

A failed event (e.g. a SELL above the open quantity) raises before the
book is mutated.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from portfolio_tracker.models import CorporateActionType, CostBasisMethod, TransactionType
from portfolio_tracker.services.constants import ZERO
from portfolio_tracker.services.exceptions import InsufficientSharesError, ValidationError
from portfolio_tracker.services.ledger.allocator import (
    LotIdentity,
    LotSelection,
    OpenLot,
    allocate,
    sort_lots,
)
from portfolio_tracker.utils.date_utils import as_naive_utc
from portfolio_tracker.utils.decimal_utils import DECIMAL_CONTEXT, to_storage

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class AppliedAction:
    """
    A corporate action as replayed against one portfolio.

    Built from an APPLIED PortfolioAction joined to its CorporateAction.
    Dividends are realized as synthetic transactions and do not reach the
    book.
    """
    id: int
    symbol: str
    action_type: CorporateActionType
    action_date: date
    detected_at: datetime
    ratio: Decimal | None = None
    new_symbol: str | None = None
    cost_allocation: Decimal | None = None


@dataclass(frozen=True)
class RealizedAllocation:
    """One lot's share of a sale, with proceeds and gain."""
    sale_key: int
    lot_key: int
    lot_id: int | None
    symbol: str
    purchase_date: date
    sale_date: date
    quantity: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    is_long_term: bool
    lot_origin: int | None = None

    @property
    def gain(self) -> Decimal:
        return self.proceeds - self.cost_basis


@dataclass(frozen=True)
class Position:
    """Aggregate of the open lots of one symbol."""
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    currency: str


# =============================================================================
# EVENT ORDERING
# =============================================================================

TRANSACTION_EVENT = 0
ACTION_EVENT = 1


def event_sort_key(kind: int, event: Any) -> tuple:
    if kind == TRANSACTION_EVENT:
        return event.date, TRANSACTION_EVENT, as_naive_utc(event.created_at), event.id
    return event.action_date, ACTION_EVENT, as_naive_utc(event.detected_at), event.id


def ordered_events(transactions: Iterable[Any], actions: Iterable[AppliedAction] = ()) -> list[tuple[int, Any]]:
    """Merge transactions and applied actions into one deterministic event stream."""
    events = [(TRANSACTION_EVENT, tx) for tx in transactions]
    events.extend((ACTION_EVENT, action) for action in actions)
    events.sort(key=lambda item: event_sort_key(*item))
    return events


# =============================================================================
# LOT BOOK
# =============================================================================

class LotBook:
    """
    Open lots of one portfolio, keyed by lot identity (opening BUY, deriving action).

    Usage:
        book = LotBook(CostBasisMethod.FIFO)
        for kind, event in ordered_events(transactions, actions):
            book.apply_event(kind, event)
        book.positions()
    """

    def __init__(self, method: CostBasisMethod, lots: Iterable[OpenLot] = ()) -> None:
        self.method = method
        self._lots: dict[LotIdentity, OpenLot] = {lot.identity: lot for lot in lots}
        self.realized: list[RealizedAllocation] = []
        # Lots changed since the last call to drain_touched()
        self._touched: set[LotIdentity] = set()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def open_lots(self, symbol: str | None = None) -> list[OpenLot]:
        """Open lots in FIFO order, optionally for one symbol."""
        lots = [lot for lot in self._lots.values() if symbol is None or lot.symbol == symbol]
        return sort_lots(lots, CostBasisMethod.FIFO)

    def open_quantity(self, symbol: str) -> Decimal:
        return sum((lot.quantity for lot in self._lots.values() if lot.symbol == symbol), ZERO)

    def symbols(self) -> list[str]:
        return sorted({lot.symbol for lot in self._lots.values()})

    def positions(self) -> dict[str, Position]:
        """Per-symbol quantity and cost basis of the open lots."""
        positions: dict[str, Position] = {}
        for lot in self.open_lots():
            current = positions.get(lot.symbol)
            if current is None:
                positions[lot.symbol] = Position(lot.symbol, lot.quantity, lot.cost_basis, lot.currency)
            else:
                positions[lot.symbol] = replace(
                    current,
                    quantity=current.quantity + lot.quantity,
                    cost_basis=current.cost_basis + lot.cost_basis,
                )
        return positions

    def drain_touched(self) -> set[LotIdentity]:
        touched, self._touched = self._touched, set()
        return touched

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def apply_event(self, kind: int, event: Any) -> list[RealizedAllocation]:
        if kind == TRANSACTION_EVENT:
            return self.apply_transaction(event)
        self.apply_action(event)
        return []

    def apply_transaction(self, tx: Any) -> list[RealizedAllocation]:
        """Apply one transaction. Only BUY and SELL change lots."""
        tx_type = TransactionType(tx.transaction_type)
        if tx_type == TransactionType.BUY:
            self.buy(
                key=tx.id,
                symbol=tx.symbol,
                on=tx.date,
                quantity=tx.quantity,
                price=tx.price,
                commission=tx.commission or ZERO,
                currency=tx.currency,
                created_at=tx.created_at,
            )
            return []
        if tx_type == TransactionType.SELL:
            return self.sell(
                key=tx.id,
                symbol=tx.symbol,
                on=tx.date,
                quantity=tx.quantity,
                price=tx.price,
                commission=tx.commission or ZERO,
                selections=selections_from_json(tx.lot_selection),
            )
        return []

    def buy(
            self,
            key: int,
            symbol: str,
            on: date,
            quantity: Decimal,
            price: Decimal,
            commission: Decimal,
            currency: str,
            created_at: datetime,
    ) -> OpenLot:
        if quantity <= ZERO:
            raise ValidationError("BUY quantity must be positive", field="quantity")
        if price is None or price < ZERO:
            raise ValidationError("BUY requires a non-negative price", field="price")

        cost = to_storage(DECIMAL_CONTEXT.add(DECIMAL_CONTEXT.multiply(quantity, price), commission))
        lot = OpenLot(
            key=key,
            symbol=symbol,
            purchase_date=on,
            created_at=created_at,
            quantity=quantity,
            cost_basis=cost,
            currency=currency,
        )
        self._lots[lot.identity] = lot
        self._touched.add(lot.identity)
        logger.debug(f"Opened lot {key}: {quantity} {symbol} at cost {cost}")
        return lot

    def sell(
            self,
            key: int,
            symbol: str,
            on: date,
            quantity: Decimal,
            price: Decimal,
            commission: Decimal,
            selections: list[LotSelection] | None = None,
    ) -> list[RealizedAllocation]:
        """
        Consume open lots of `symbol` for a sale.

        Commission is pro-rated across allocations by quantity; the last
        allocation absorbs the residual so the shares sum to the commission.
        """
        if price is None or price < ZERO:
            raise ValidationError("SELL requires a non-negative price", field="price")

        lots = self.open_lots(symbol)
        available = sum((lot.quantity for lot in lots), ZERO)
        if quantity > available:
            raise InsufficientSharesError(symbol, quantity, available, on)
        result = allocate(lots, quantity, self.method, on, selections)
        realized: list[RealizedAllocation] = []
        commission_left = commission
        last = len(result.allocations) - 1

        for index, allocation in enumerate(result.allocations):
            if index == last:
                commission_share = commission_left
            else:
                commission_share = to_storage(DECIMAL_CONTEXT.divide(
                    DECIMAL_CONTEXT.multiply(commission, allocation.quantity), quantity
                ))
                commission_left -= commission_share

            proceeds = to_storage(DECIMAL_CONTEXT.multiply(allocation.quantity, price)) - commission_share
            realized.append(RealizedAllocation(
                sale_key=key,
                lot_key=allocation.key,
                lot_id=allocation.lot_id,
                symbol=symbol,
                purchase_date=allocation.purchase_date,
                sale_date=on,
                quantity=allocation.quantity,
                cost_basis=allocation.cost_basis,
                proceeds=proceeds,
                is_long_term=allocation.is_long_term,
                lot_origin=allocation.origin,
            ))

        # Mutate only after the allocation succeeded
        for lot in lots:
            del self._lots[lot.identity]
        for lot in result.remaining_lots:
            self._lots[lot.identity] = lot
        self._touched.update((a.key, a.origin) for a in result.allocations)

        self.realized.extend(realized)
        logger.debug(f"Sale {key}: {quantity} {symbol} across {len(realized)} lot(s)")
        return realized

    # -------------------------------------------------------------------------
    # Corporate actions
    # -------------------------------------------------------------------------

    def apply_action(self, action: AppliedAction) -> int:
        """Apply a split, merger, ticker change or spinoff. Returns the number of lots changed."""
        action_type = CorporateActionType(action.action_type)
        if action_type == CorporateActionType.SPLIT:
            return self.split(action.symbol, action.action_date, action.ratio)
        if action_type == CorporateActionType.MERGER:
            return self.merge(action.symbol, action.new_symbol, action.action_date, action.ratio)
        if action_type == CorporateActionType.TICKER_CHANGE:
            return self.merge(action.symbol, action.new_symbol, action.action_date, Decimal("1"))
        if action_type == CorporateActionType.SPINOFF:
            return self.spinoff(
                action.id, action.symbol, action.new_symbol, action.action_date, action.ratio, action.cost_allocation
            )
        return 0

    def split(self, symbol: str, on: date, ratio: Decimal | None) -> int:
        """quantity × ratio for every open lot bought on or before the action date."""
        if ratio is None or ratio <= ZERO:
            raise ValidationError("Split ratio must be positive", field="ratio")
        return self._rewrite(symbol, on, ratio, new_symbol=None)

    def merge(self, symbol: str, new_symbol: str | None, on: date, ratio: Decimal | None) -> int:
        """Convert every open lot of symbol into new_symbol at ratio; cost and purchase date kept."""
        if ratio is None or ratio <= ZERO:
            raise ValidationError("Merger ratio must be positive", field="ratio")
        if not new_symbol:
            raise ValidationError("Merger requires new_symbol", field="new_symbol")
        return self._rewrite(symbol, on, ratio, new_symbol=new_symbol)

    def spinoff(
            self,
            action_id: int,
            symbol: str,
            new_symbol: str | None,
            on: date,
            ratio: Decimal | None,
            cost_allocation: Decimal | None,
    ) -> int:
        """
        Derive a new_symbol lot from every open lot of symbol bought on or before the action date.

        The derived lot holds parent quantity × ratio and keeps the parent's
        purchase date; cost_allocation of the parent's cost basis moves to
        it, so the pair carries the parent's original cost.
        """
        if ratio is None or ratio <= ZERO:
            raise ValidationError("Spinoff ratio must be positive", field="ratio")
        if not new_symbol:
            raise ValidationError("Spinoff requires new_symbol", field="new_symbol")
        if new_symbol == symbol:
            raise ValidationError("Spinoff new_symbol must differ from symbol", field="new_symbol")
        if cost_allocation is None or not ZERO <= cost_allocation <= Decimal("1"):
            raise ValidationError("Spinoff cost allocation must be between 0 and 1", field="cost_allocation")

        changed = 0
        for lot in self.open_lots(symbol):
            if lot.purchase_date > on:
                continue
            quantity = to_storage(DECIMAL_CONTEXT.multiply(lot.quantity, ratio))
            if quantity == ZERO:
                continue
            moved = to_storage(DECIMAL_CONTEXT.multiply(lot.cost_basis, cost_allocation))
            derived = OpenLot(
                key=lot.key,
                symbol=new_symbol,
                purchase_date=lot.purchase_date,
                created_at=lot.created_at,
                quantity=quantity,
                cost_basis=moved,
                currency=lot.currency,
                origin=action_id,
            )
            existing = self._lots.get(derived.identity)
            if existing is not None:
                derived = replace(
                    existing,
                    quantity=existing.quantity + quantity,
                    cost_basis=existing.cost_basis + moved,
                )
            self._lots[lot.identity] = replace(lot, cost_basis=lot.cost_basis - moved)
            self._lots[derived.identity] = derived
            self._touched.update((lot.identity, derived.identity))
            changed += 1

        logger.debug(f"Spinoff {action_id}: {changed} {symbol} lot(s) derived into {new_symbol}")
        return changed

    def _rewrite(self, symbol: str, on: date, ratio: Decimal, new_symbol: str | None) -> int:
        changed = 0
        for lot in self.open_lots(symbol):
            if lot.purchase_date > on:
                continue
            self._lots[lot.identity] = replace(
                lot,
                symbol=new_symbol or lot.symbol,
                quantity=to_storage(DECIMAL_CONTEXT.multiply(lot.quantity, ratio)),
            )
            self._touched.add(lot.identity)
            changed += 1
        return changed


def selections_from_json(raw: list | None) -> list[LotSelection] | None:
    """Decode Transaction.lot_selection into allocator selections."""
    if not raw:
        return None
    return [
        LotSelection(
            key=int(item["source_transaction_id"]),
            quantity=Decimal(str(item["quantity"])),
            origin=_optional_int(item.get("source_action_id")),
        )
        for item in raw
    ]


def replay(
        method: CostBasisMethod,
        transactions: Iterable[Any],
        actions: Iterable[AppliedAction] = (),
) -> LotBook:
    """Run a complete event log through a fresh book."""
    book = LotBook(method)
    for kind, event in ordered_events(transactions, actions):
        book.apply_event(kind, event)
    return book


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)
