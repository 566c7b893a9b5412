# portfolio_tracker/schemas/errors.py
"""
Error response schema.

Every error the API returns has this shape, whichever handler in
main.py produced it.
"""

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error response format.

    Example:
        {"error": "Insufficient shares of AAPL: requested 11, available 10",
         "code": "INSUFFICIENT_SHARES"}
    """

    error: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code (e.g. 'INSUFFICIENT_SHARES')")
    details: dict[str, Any] | list[dict[str, Any]] | None = Field(
        default=None,
        description="Additional error context (optional)"
    )
