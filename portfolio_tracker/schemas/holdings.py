# portfolio_tracker/schemas/holdings.py
"""Response schemas for holdings, tax lots and realized gains."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class HoldingResponse(BaseModel):
    symbol: str
    quantity: Decimal
    total_cost_basis: Decimal
    avg_cost_price: Decimal | None
    currency: str
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaxLotResponse(BaseModel):
    id: int
    symbol: str
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    currency: str
    source_transaction_id: int
    source_action_id: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RealizedGainResponse(BaseModel):
    id: int
    sale_transaction_id: int
    lot_id: int | None
    source_transaction_id: int
    source_action_id: int | None = None
    symbol: str
    purchase_date: date
    sale_date: date
    quantity: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    gain: Decimal
    is_long_term: bool

    model_config = ConfigDict(from_attributes=True)
