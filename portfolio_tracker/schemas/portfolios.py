# portfolio_tracker/schemas/portfolios.py
"""
Pydantic schemas for Portfolio validation.

These schemas define:
- What data clients must send (Create)
- What data clients can update (Update)
- What data the API returns (Response)

The owner is never sent by the client: it is the principal id of the
bearer token.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portfolio_tracker.models import CostBasisMethod
from portfolio_tracker.schemas.validators import validate_currency


# =============================================================================
# CREATE / UPDATE
# =============================================================================

class PortfolioCreate(BaseModel):
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        examples=["Retirement", "Taxable brokerage"],
        description="Name of the portfolio"
    )

    base_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        examples=["USD", "EUR"],
        description="Currency performance and snapshots are reported in (ISO 4217)"
    )

    cost_basis_method: CostBasisMethod = Field(
        default=CostBasisMethod.FIFO,
        description="Lot relief method for sales; fixed once the portfolio has a SELL"
    )

    @field_validator('name')
    @classmethod
    def normalize_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator('base_currency')
    @classmethod
    def validate_and_normalize_currency(cls, v: str) -> str:
        return validate_currency(v)


class PortfolioUpdate(BaseModel):
    """
    Schema for updating an existing portfolio.

    All fields are optional. Changing cost_basis_method after the first
    SELL fails with COST_BASIS_METHOD_LOCKED.
    """

    name: str | None = Field(default=None, min_length=1, max_length=100)
    base_currency: str | None = Field(default=None, min_length=3, max_length=3)
    cost_basis_method: CostBasisMethod | None = None

    @field_validator('name')
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip()

    @field_validator('base_currency')
    @classmethod
    def validate_and_normalize_currency(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return validate_currency(v)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class PortfolioResponse(BaseModel):
    id: int
    owner_id: str
    name: str
    base_currency: str
    cost_basis_method: CostBasisMethod
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PortfolioListResponse(BaseModel):
    items: list[PortfolioResponse]
    total: int
