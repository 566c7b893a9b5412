# portfolio_tracker/schemas/transactions.py
"""
Pydantic schemas for Transaction validation.

Field shapes are checked here; rules that depend on the portfolio
(symbol or price required for the type, SPECIFIC_LOT selections, open
shares for a SELL) are checked by the EventStore.

IMPORTANT: All financial values use Decimal for precision and are
serialized as JSON strings. Never use float for money!
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portfolio_tracker.models import TransactionType
from portfolio_tracker.schemas.pagination import PaginationMeta
from portfolio_tracker.schemas.validators import validate_currency, validate_optional_symbol
from portfolio_tracker.services.events import TransactionInput


class LotSelectionItem(BaseModel):
    """One lot consumed by a SPECIFIC_LOT sale."""

    lot_id: int = Field(..., gt=0, description="Open tax lot id")
    quantity: Decimal = Field(..., gt=0, description="Shares taken from that lot")


# =============================================================================
# CREATE / UPDATE
# =============================================================================

class TransactionCreate(BaseModel):
    """
    Schema for recording a transaction.

    Examples:
        {"transaction_type": "BUY", "symbol": "AAPL", "date": "2024-01-02",
         "quantity": "10", "price": "185.64", "commission": "1"}
        {"transaction_type": "DEPOSIT", "date": "2024-01-01", "quantity": "5000"}
    """

    transaction_type: TransactionType
    date: date
    quantity: Decimal = Field(
        ...,
        gt=0,
        description="Shares for BUY/SELL, cash amount for DIVIDEND/DEPOSIT/WITHDRAWAL/FEE",
        examples=["10", "0.5", "5000"]
    )
    symbol: str | None = Field(default=None, max_length=20, examples=["AAPL"])
    price: Decimal | None = Field(default=None, ge=0, description="Price per share (BUY/SELL)")
    commission: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    notes: str | None = Field(default=None, max_length=500)
    lot_selections: list[LotSelectionItem] | None = Field(
        default=None,
        description="SELL in a SPECIFIC_LOT portfolio: which lots to relieve"
    )

    @field_validator('symbol')
    @classmethod
    def normalize_symbol(cls, v: str | None) -> str | None:
        return validate_optional_symbol(v)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return validate_currency(v)

    def to_input(self) -> TransactionInput:
        return TransactionInput(
            transaction_type=self.transaction_type,
            date=self.date,
            quantity=self.quantity,
            symbol=self.symbol,
            price=self.price,
            commission=self.commission,
            currency=self.currency,
            notes=self.notes,
            lot_selections=[(s.lot_id, s.quantity) for s in self.lot_selections] if self.lot_selections else None,
        )


class TransactionUpdate(TransactionCreate):
    """
    Full replacement of a transaction's fields.

    The portfolio is re-derived from its log afterwards, so a correction
    to an old trade flows through every later sale.
    """


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class TransactionResponse(BaseModel):
    id: int
    portfolio_id: int
    transaction_type: TransactionType
    symbol: str | None
    date: date
    quantity: Decimal
    price: Decimal | None
    commission: Decimal
    currency: str
    notes: str | None
    lot_selection: list[dict] | None = None
    import_batch_id: int | None = None
    portfolio_action_id: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    pagination: PaginationMeta
