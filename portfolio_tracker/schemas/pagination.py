# portfolio_tracker/schemas/pagination.py
"""
Pagination block of the transaction log listing.

The log is read in event order (date, created_at, id), so a (skip, limit)
window is stable between requests unless a backdated event is recorded.
"""

from pydantic import BaseModel, Field


class PaginationMeta(BaseModel):
    total: int = Field(..., ge=0, description="Events matching the filters")
    skip: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    page: int = Field(..., ge=1, description="1-indexed page of this window")
    pages: int = Field(..., ge=1)
    has_next: bool
    has_previous: bool

    @classmethod
    def create(cls, total: int, skip: int, limit: int) -> "PaginationMeta":
        pages = max(1, -(-total // limit))
        return cls(
            total=total,
            skip=skip,
            limit=limit,
            page=skip // limit + 1,
            pages=pages,
            has_next=skip + limit < total,
            has_previous=skip > 0,
        )
