# portfolio_tracker/schemas/tax.py
"""Schemas for the allocation preview, loss harvesting and the tax report."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portfolio_tracker.models import CostBasisMethod
from portfolio_tracker.schemas.holdings import RealizedGainResponse
from portfolio_tracker.schemas.transactions import LotSelectionItem
from portfolio_tracker.schemas.validators import validate_symbol
from portfolio_tracker.services.constants import MAX_TAX_YEAR, MIN_TAX_YEAR


# =============================================================================
# ALLOCATION PREVIEW
# =============================================================================

class AllocationRequest(BaseModel):
    """
    Hypothetical sale. Nothing is written.

    method defaults to the portfolio's own method. price, when given,
    adds proceeds and gain per allocation.
    """

    symbol: str
    quantity: Decimal = Field(..., gt=0)
    method: str | None = Field(default=None, examples=["FIFO", "LIFO", "SPECIFIC_LOT"])
    sell_date: date | None = None
    price: Decimal | None = Field(default=None, ge=0)
    lot_selections: list[LotSelectionItem] | None = None

    @field_validator('symbol')
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return validate_symbol(v)


class AllocationPreviewResponse(BaseModel):
    lot_id: int | None
    symbol: str
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    is_long_term: bool
    proceeds: Decimal | None = None
    gain: Decimal | None = None

    model_config = ConfigDict(from_attributes=True)


class AllocationResponse(BaseModel):
    symbol: str
    method: CostBasisMethod
    sell_date: date
    quantity: Decimal
    total_cost_basis: Decimal
    allocations: list[AllocationPreviewResponse]

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# HARVEST
# =============================================================================

class HarvestOpportunityResponse(BaseModel):
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    current_price: Decimal
    current_value: Decimal
    unrealized_loss: Decimal
    loss_percent: Decimal

    model_config = ConfigDict(from_attributes=True)


class HarvestResponse(BaseModel):
    threshold: Decimal
    opportunities: list[HarvestOpportunityResponse]


# =============================================================================
# TAX REPORT
# =============================================================================

class TaxReportRequest(BaseModel):
    tax_year: int = Field(..., ge=MIN_TAX_YEAR, le=MAX_TAX_YEAR)


class TaxReportResponse(BaseModel):
    tax_year: int
    short_term_gains: list[RealizedGainResponse]
    long_term_gains: list[RealizedGainResponse]
    total_short_term_gain: Decimal
    total_long_term_gain: Decimal
    total_gain: Decimal

    model_config = ConfigDict(from_attributes=True)
