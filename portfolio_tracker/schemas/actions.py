# portfolio_tracker/schemas/actions.py
"""Schemas for global corporate actions and per-portfolio review."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portfolio_tracker.models import ActionStatus, CorporateActionType
from portfolio_tracker.schemas.validators import validate_currency, validate_optional_symbol, validate_symbol
from portfolio_tracker.services.corporate_actions import CorporateActionInput


class CorporateActionCreate(BaseModel):
    """
    Register a corporate action as reference data.

    Required by type:
        SPLIT          ratio (2 for 2:1)
        DIVIDEND       amount per share
        MERGER         ratio and new_symbol
        TICKER_CHANGE  new_symbol
        SPINOFF        ratio (new shares per parent share) and new_symbol;
                       cost_allocation defaults to 0.10
    """

    symbol: str
    action_type: CorporateActionType
    action_date: date
    ratio: Decimal | None = Field(default=None, gt=0)
    amount: Decimal | None = Field(default=None, ge=0)
    new_symbol: str | None = None
    cost_allocation: Decimal | None = Field(default=None, ge=0, le=1)
    currency: str | None = None
    description: str | None = Field(default=None, max_length=500)

    @field_validator('symbol')
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return validate_symbol(v)

    @field_validator('new_symbol')
    @classmethod
    def normalize_new_symbol(cls, v: str | None) -> str | None:
        return validate_optional_symbol(v)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return validate_currency(v)

    def to_input(self) -> CorporateActionInput:
        return CorporateActionInput(
            symbol=self.symbol,
            action_type=self.action_type,
            action_date=self.action_date,
            ratio=self.ratio,
            amount=self.amount,
            new_symbol=self.new_symbol,
            cost_allocation=self.cost_allocation,
            currency=self.currency,
            description=self.description,
        )


class CorporateActionResponse(BaseModel):
    id: int
    symbol: str
    action_type: CorporateActionType
    action_date: date
    ratio: Decimal | None
    amount: Decimal | None
    new_symbol: str | None
    cost_allocation: Decimal | None = None
    currency: str | None
    description: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PortfolioActionResponse(BaseModel):
    id: int
    portfolio_id: int
    corporate_action_id: int
    status: ActionStatus
    affected_symbol: str
    shares_affected: Decimal
    description: str | None
    detected_at: datetime
    reviewed_at: datetime | None
    applied_at: datetime | None
    reviewer_id: str | None
    notes: str | None
    apply_error: str | None
    corporate_action: CorporateActionResponse

    model_config = ConfigDict(from_attributes=True)


class ApproveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)
