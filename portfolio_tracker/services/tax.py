# portfolio_tracker/services/tax.py
"""
Tax Service: sale previews, loss harvesting and annual reports.

Operations:
    preview_allocation   which lots a hypothetical sale would consume
    harvest_opportunities holdings whose unrealized loss is below a threshold
    tax_report           realized short- and long-term gains for a year

Harvest formula (per holding):
    current_value  = quantity × quote(symbol)
    unrealized     = current_value − cost_basis
    loss_percent   = unrealized / cost_basis × 100
    included when loss_percent < threshold (strictly, signed percent, default −3)
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from portfolio_tracker.models import CostBasisMethod, Portfolio, RealizedGain
from portfolio_tracker.services.constants import (
    DEFAULT_HARVEST_THRESHOLD,
    HUNDRED,
    MAX_TAX_YEAR,
    MIN_TAX_YEAR,
    ZERO,
)
from portfolio_tracker.services.exceptions import (
    InvalidCostBasisMethodError,
    InvalidLotSelectionError,
    InvalidThresholdError,
    PriceUnavailableError,
    ValidationError,
)
from portfolio_tracker.services.ledger.allocator import LotSelection, allocate, parse_method
from portfolio_tracker.services.ledger.ledger import to_open_lot
from portfolio_tracker.services.protocols import PriceOracleProtocol
from portfolio_tracker.services.query import QueryService
from portfolio_tracker.utils.date_utils import utc_today
from portfolio_tracker.utils.decimal_utils import DECIMAL_CONTEXT, safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class AllocationPreview:
    lot_id: int | None
    symbol: str
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    is_long_term: bool
    proceeds: Decimal | None = None
    gain: Decimal | None = None


@dataclass
class AllocationPreviewResult:
    symbol: str
    method: CostBasisMethod
    sell_date: date
    quantity: Decimal
    total_cost_basis: Decimal
    allocations: list[AllocationPreview] = field(default_factory=list)


@dataclass
class HarvestOpportunity:
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    current_price: Decimal
    current_value: Decimal
    unrealized_loss: Decimal
    loss_percent: Decimal


@dataclass
class TaxReport:
    tax_year: int
    short_term_gains: list[RealizedGain] = field(default_factory=list)
    long_term_gains: list[RealizedGain] = field(default_factory=list)
    total_short_term_gain: Decimal = ZERO
    total_long_term_gain: Decimal = ZERO
    total_gain: Decimal = ZERO


# =============================================================================
# SERVICE
# =============================================================================

class TaxService:

    def __init__(self, oracle: PriceOracleProtocol, query: QueryService | None = None) -> None:
        self._oracle = oracle
        self._query = query or QueryService()

    def preview_allocation(
            self,
            db: Session,
            portfolio: Portfolio,
            symbol: str,
            quantity: Decimal,
            method: CostBasisMethod | str | None = None,
            sell_date: date | None = None,
            price: Decimal | None = None,
            selections: list[tuple[int, Decimal]] | None = None,
    ) -> AllocationPreviewResult:
        """
        Allocate a hypothetical sale against the current open lots. Writes nothing.

        Raises:
            InvalidCostBasisMethodError: Unknown method, or SPECIFIC_LOT without selections
            InsufficientSharesError: quantity above the open quantity
            InvalidLotSelectionError: Selection names a lot that is not open
        """
        chosen = parse_method(method) if method is not None else portfolio.cost_basis_method
        symbol = symbol.strip().upper()
        sell_date = sell_date or utc_today()
        if price is not None and price < ZERO:
            raise ValidationError("Price cannot be negative", field="price")

        rows = self._query.tax_lots(db, portfolio, symbol)
        lots = [to_open_lot(row) for row in rows]

        lot_selections = None
        if selections:
            if chosen != CostBasisMethod.SPECIFIC_LOT:
                raise InvalidCostBasisMethodError(
                    chosen.value, reason="Lot selections require the SPECIFIC_LOT method"
                )
            lot_by_id = {lot.lot_id: lot for lot in lots}
            lot_selections = []
            for lot_id, selected in selections:
                if lot_id not in lot_by_id:
                    raise InvalidLotSelectionError(
                        f"Tax lot {lot_id} is not an open lot of {symbol}", field="selections"
                    )
                lot = lot_by_id[lot_id]
                lot_selections.append(LotSelection(key=lot.key, quantity=selected, origin=lot.origin))

        result = allocate(lots, quantity, chosen, sell_date, lot_selections)

        previews = []
        for allocation in result.allocations:
            proceeds = DECIMAL_CONTEXT.multiply(allocation.quantity, price) if price is not None else None
            previews.append(AllocationPreview(
                lot_id=allocation.lot_id,
                symbol=allocation.symbol,
                purchase_date=allocation.purchase_date,
                quantity=allocation.quantity,
                cost_basis=allocation.cost_basis,
                is_long_term=allocation.is_long_term,
                proceeds=proceeds,
                gain=proceeds - allocation.cost_basis if proceeds is not None else None,
            ))

        return AllocationPreviewResult(
            symbol=symbol,
            method=chosen,
            sell_date=sell_date,
            quantity=quantity,
            total_cost_basis=result.total_cost_basis,
            allocations=previews,
        )

    def harvest_opportunities(
            self,
            db: Session,
            portfolio: Portfolio,
            threshold: Decimal = DEFAULT_HARVEST_THRESHOLD,
    ) -> list[HarvestOpportunity]:
        """
        Holdings whose loss percent is strictly below `threshold`, worst first.

        Holdings without a quote are skipped.

        Raises:
            InvalidThresholdError: threshold outside [−100, 0]
        """
        if threshold < -HUNDRED or threshold > ZERO:
            raise InvalidThresholdError(threshold)

        opportunities = []
        for holding in self._query.holdings(db, portfolio):
            if holding.total_cost_basis <= ZERO:
                continue
            try:
                price = self._oracle.quote(holding.symbol)
            except PriceUnavailableError:
                logger.warning(f"No quote for {holding.symbol}, skipped in harvest scan of portfolio {portfolio.id}")
                continue

            current_value = DECIMAL_CONTEXT.multiply(holding.quantity, price)
            unrealized = current_value - holding.total_cost_basis
            loss_percent = safe_divide(unrealized, holding.total_cost_basis) * HUNDRED
            if loss_percent < threshold:
                opportunities.append(HarvestOpportunity(
                    symbol=holding.symbol,
                    quantity=holding.quantity,
                    cost_basis=holding.total_cost_basis,
                    current_price=price,
                    current_value=current_value,
                    unrealized_loss=unrealized,
                    loss_percent=loss_percent,
                ))

        opportunities.sort(key=lambda o: (o.loss_percent, o.symbol))
        logger.info(
            f"Harvest scan for portfolio {portfolio.id} (threshold {threshold}%): "
            f"{len(opportunities)} opportunity(ies)"
        )
        return opportunities

    def tax_report(self, db: Session, portfolio: Portfolio, tax_year: int) -> TaxReport:
        """
        Realized gains with a sale date in `tax_year`, split by holding period.

        Raises:
            ValidationError: tax_year outside [1900, 2100]
        """
        if tax_year < MIN_TAX_YEAR or tax_year > MAX_TAX_YEAR:
            raise ValidationError(f"tax_year must be between {MIN_TAX_YEAR} and {MAX_TAX_YEAR}", field="tax_year")

        report = TaxReport(tax_year=tax_year)
        for gain in self._query.realized_gains(db, portfolio, year=tax_year):
            if gain.is_long_term:
                report.long_term_gains.append(gain)
                report.total_long_term_gain += gain.gain
            else:
                report.short_term_gains.append(gain)
                report.total_short_term_gain += gain.gain
        report.total_gain = report.total_short_term_gain + report.total_long_term_gain
        return report
