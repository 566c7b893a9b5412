# portfolio_tracker/services/ledger/allocator.py
"""
Cost-basis allocation.

Pure function: given the open lots of one symbol, a sale quantity and a
method, return which lots the sale consumes and what is left.

Methods:
    FIFO:          oldest first, ordered by (purchase_date, created_at)
    LIFO:          newest first, ordered by (purchase_date, created_at) descending
    SPECIFIC_LOT:  caller names (lot, quantity) pairs; their sum must equal the sale

Allocated cost:
    cost = round(lot.cost_basis × quantity / lot.quantity, 10 places)

A lot consumed entirely gives up its whole cost basis, and a partially
consumed lot keeps `cost_basis − allocated`, so allocated plus remaining
cost always equals the cost of the consumed lots exactly and both stay at
the stored scale.

A lot is identified by (key, origin): the BUY that opened it and, for lots
derived by a spinoff, the applied action that created them.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal

from portfolio_tracker.models import CostBasisMethod
from portfolio_tracker.services.constants import ZERO
from portfolio_tracker.services.exceptions import (
    InsufficientSharesError,
    InvalidCostBasisMethodError,
    InvalidLotSelectionError,
    ValidationError,
)
from portfolio_tracker.utils.date_utils import as_naive_utc, is_long_term
from portfolio_tracker.utils.decimal_utils import DECIMAL_CONTEXT, to_storage


# =============================================================================
# DATA CLASSES
# =============================================================================

# (source transaction id, originating action id)
LotIdentity = tuple[int, int | None]


@dataclass(frozen=True)
class OpenLot:
    """
    An open tax lot as seen by the allocator.

    Attributes:
        key: Id of the BUY that opened the lot (or its spinoff parent)
        symbol: Current symbol (changes on mergers)
        purchase_date: Acquisition day, kept through splits and mergers
        created_at: Tie-breaker for lots bought on the same day
        quantity: Open quantity (> 0)
        cost_basis: Remaining cost basis (>= 0)
        currency: Currency the lot was bought in
        lot_id: Database id when loaded from storage
        origin: Applied action that derived the lot; None for a BUY lot
    """
    key: int
    symbol: str
    purchase_date: date
    created_at: datetime
    quantity: Decimal
    cost_basis: Decimal
    currency: str = "USD"
    lot_id: int | None = None
    origin: int | None = None

    @property
    def identity(self) -> LotIdentity:
        return self.key, self.origin

    @property
    def cost_per_share(self) -> Decimal | None:
        if self.quantity == ZERO:
            return None
        return DECIMAL_CONTEXT.divide(self.cost_basis, self.quantity)


@dataclass(frozen=True)
class LotSelection:
    """One (lot, quantity) pair of a SPECIFIC_LOT sale."""
    key: int
    quantity: Decimal
    origin: int | None = None

    @property
    def identity(self) -> LotIdentity:
        return self.key, self.origin


@dataclass(frozen=True)
class LotAllocation:
    """The part of one lot consumed by a sale."""
    key: int
    lot_id: int | None
    symbol: str
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    is_long_term: bool
    origin: int | None = None


@dataclass
class AllocationResult:
    allocations: list[LotAllocation] = field(default_factory=list)
    remaining_lots: list[OpenLot] = field(default_factory=list)

    @property
    def total_quantity(self) -> Decimal:
        return sum((a.quantity for a in self.allocations), ZERO)

    @property
    def total_cost_basis(self) -> Decimal:
        return sum((a.cost_basis for a in self.allocations), ZERO)


# =============================================================================
# HELPERS
# =============================================================================

def parse_method(method: CostBasisMethod | str) -> CostBasisMethod:
    """Coerce a method name, raising InvalidCostBasisMethodError for unknown values."""
    if isinstance(method, CostBasisMethod):
        return method
    try:
        return CostBasisMethod(str(method).strip().upper())
    except ValueError:
        raise InvalidCostBasisMethodError(str(method))


def sort_lots(lots: list[OpenLot], method: CostBasisMethod) -> list[OpenLot]:
    """Order lots in consumption order for FIFO/LIFO. SPECIFIC_LOT keeps FIFO order."""
    ordered = sorted(lots, key=lambda lot: (lot.purchase_date, as_naive_utc(lot.created_at), lot.key, lot.origin or 0))
    if method == CostBasisMethod.LIFO:
        ordered.reverse()
    return ordered


def _take(lot: OpenLot, quantity: Decimal, sell_date: date) -> tuple[LotAllocation, OpenLot | None]:
    """Consume `quantity` from `lot`. Returns the allocation and what remains of the lot."""
    if quantity == lot.quantity:
        cost = lot.cost_basis
        remaining = None
    else:
        cost = to_storage(DECIMAL_CONTEXT.divide(DECIMAL_CONTEXT.multiply(lot.cost_basis, quantity), lot.quantity))
        remaining = replace(
            lot,
            quantity=lot.quantity - quantity,
            cost_basis=lot.cost_basis - cost,
        )

    allocation = LotAllocation(
        key=lot.key,
        lot_id=lot.lot_id,
        symbol=lot.symbol,
        purchase_date=lot.purchase_date,
        quantity=quantity,
        cost_basis=cost,
        is_long_term=is_long_term(lot.purchase_date, sell_date),
        origin=lot.origin,
    )
    return allocation, remaining


# =============================================================================
# ALLOCATION
# =============================================================================

def allocate(
        open_lots: list[OpenLot],
        sell_quantity: Decimal,
        method: CostBasisMethod | str,
        sell_date: date,
        selections: list[LotSelection] | None = None,
) -> AllocationResult:
    """
    Allocate a sale across open lots.

    Args:
        open_lots: Open lots of the symbol being sold (any order)
        sell_quantity: Quantity sold (> 0)
        method: FIFO, LIFO or SPECIFIC_LOT
        sell_date: Sale day, decides long-term vs short-term
        selections: Required for SPECIFIC_LOT, ignored otherwise

    Returns:
        AllocationResult with allocations in consumption order and the
        remaining lots in FIFO order

    Raises:
        ValidationError: Non-positive sell quantity
        InvalidCostBasisMethodError: Unknown method, or SPECIFIC_LOT without selections
        InvalidLotSelectionError: Unknown lot, duplicate lot, or selection sum mismatch
        InsufficientSharesError: Not enough open quantity overall or in a selected lot
    """
    method = parse_method(method)

    if sell_quantity <= ZERO:
        raise ValidationError("Sell quantity must be positive", field="quantity")

    available = sum((lot.quantity for lot in open_lots), ZERO)
    symbol = open_lots[0].symbol if open_lots else ""

    if available < sell_quantity:
        raise InsufficientSharesError(symbol, sell_quantity, available, sell_date)

    if method == CostBasisMethod.SPECIFIC_LOT:
        return _allocate_specific(open_lots, sell_quantity, sell_date, selections)

    result = AllocationResult()
    remaining_qty = sell_quantity
    untouched: dict[LotIdentity, OpenLot] = {lot.identity: lot for lot in open_lots}

    for lot in sort_lots(open_lots, method):
        if remaining_qty == ZERO:
            break
        take = min(remaining_qty, lot.quantity)
        allocation, leftover = _take(lot, take, sell_date)
        result.allocations.append(allocation)
        remaining_qty -= take
        if leftover is None:
            del untouched[lot.identity]
        else:
            untouched[lot.identity] = leftover

    result.remaining_lots = sort_lots(list(untouched.values()), CostBasisMethod.FIFO)
    return result


def _allocate_specific(
        open_lots: list[OpenLot],
        sell_quantity: Decimal,
        sell_date: date,
        selections: list[LotSelection] | None,
) -> AllocationResult:
    if not selections:
        raise InvalidCostBasisMethodError(
            CostBasisMethod.SPECIFIC_LOT.value,
            reason="SPECIFIC_LOT sales require lot selections",
        )

    lots_by_key = {lot.identity: lot for lot in open_lots}
    seen: set[LotIdentity] = set()
    total = ZERO

    for selection in selections:
        if selection.identity in seen:
            raise InvalidLotSelectionError(f"Lot {_label(selection)} is selected more than once", field="lot_selections")
        seen.add(selection.identity)
        if selection.identity not in lots_by_key:
            raise InvalidLotSelectionError(f"Lot {_label(selection)} is not an open lot of this symbol", field="lot_selections")
        if selection.quantity <= ZERO:
            raise InvalidLotSelectionError("Selected quantities must be positive", field="lot_selections")
        total += selection.quantity

    if total != sell_quantity:
        raise InvalidLotSelectionError(
            f"Selected quantities sum to {total}, expected {sell_quantity}",
            field="lot_selections",
        )

    result = AllocationResult()
    for selection in selections:
        lot = lots_by_key[selection.identity]
        if selection.quantity > lot.quantity:
            raise InsufficientSharesError(lot.symbol, selection.quantity, lot.quantity, sell_date)
        allocation, leftover = _take(lot, selection.quantity, sell_date)
        result.allocations.append(allocation)
        if leftover is None:
            del lots_by_key[lot.identity]
        else:
            lots_by_key[lot.identity] = leftover

    result.remaining_lots = sort_lots(list(lots_by_key.values()), CostBasisMethod.FIFO)
    return result


def _label(selection: LotSelection) -> str:
    if selection.origin is None:
        return str(selection.key)
    return f"{selection.key}/{selection.origin}"
