# portfolio_tracker/routers/tax_lots.py
"""
Tax lot endpoints.

- GET  /portfolios/{portfolio_id}/tax-lots            open lots (?symbol=)
- GET  /portfolios/{portfolio_id}/tax-lots/harvest    loss-harvest candidates (?threshold=-3)
- POST /portfolios/{portfolio_id}/tax-lots/allocate   preview which lots a sale would consume
- POST /portfolios/{portfolio_id}/tax-lots/report     realized gains of a tax year
- GET  /portfolios/{portfolio_id}/tax-lots/{lot_id}   one lot

The fixed paths are declared before /{lot_id} so they are not captured
by it.
"""

import logging
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_portfolio_with_owner_check, get_query_service, get_tax_service
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_ANALYTICS, RATE_LIMIT_DEFAULT, limiter
from portfolio_tracker.models import Portfolio, TaxLot
from portfolio_tracker.schemas.holdings import TaxLotResponse
from portfolio_tracker.schemas.tax import (
    AllocationRequest,
    AllocationResponse,
    HarvestResponse,
    TaxReportRequest,
    TaxReportResponse,
)
from portfolio_tracker.services.constants import DEFAULT_HARVEST_THRESHOLD
from portfolio_tracker.services.query import QueryService
from portfolio_tracker.services.tax import AllocationPreviewResult, TaxReport, TaxService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Tax Lots"])


@router.get("/{portfolio_id}/tax-lots", response_model=list[TaxLotResponse], summary="List open tax lots")
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_tax_lots(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    query: Annotated[QueryService, Depends(get_query_service)],
    symbol: str | None = None,
) -> list[TaxLot]:
    return query.tax_lots(db, portfolio, symbol)


@router.get(
    "/{portfolio_id}/tax-lots/harvest",
    response_model=HarvestResponse,
    summary="Find loss-harvesting opportunities",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def harvest_opportunities(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[TaxService, Depends(get_tax_service)],
    threshold: Decimal = DEFAULT_HARVEST_THRESHOLD,
) -> dict:
    """
    Holdings whose unrealized loss, in percent of cost basis, is strictly
    below `threshold` (a value in [-100, 0]). Worst loss first.
    """
    opportunities = service.harvest_opportunities(db, portfolio, threshold)
    return {"threshold": threshold, "opportunities": opportunities}


@router.post(
    "/{portfolio_id}/tax-lots/allocate",
    response_model=AllocationResponse,
    summary="Preview a sale's lot allocation",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def preview_allocation(
    request: Request,
    body: AllocationRequest,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[TaxService, Depends(get_tax_service)],
) -> AllocationPreviewResult:
    """Nothing is written. Uses the portfolio's method unless `method` is given."""
    selections = None
    if body.lot_selections:
        selections = [(item.lot_id, item.quantity) for item in body.lot_selections]
    return service.preview_allocation(
        db,
        portfolio,
        body.symbol,
        body.quantity,
        method=body.method,
        sell_date=body.sell_date,
        price=body.price,
        selections=selections,
    )


@router.post(
    "/{portfolio_id}/tax-lots/report",
    response_model=TaxReportResponse,
    summary="Tax report for a year",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def tax_report(
    request: Request,
    body: TaxReportRequest,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[TaxService, Depends(get_tax_service)],
) -> TaxReport:
    return service.tax_report(db, portfolio, body.tax_year)


@router.get("/{portfolio_id}/tax-lots/{lot_id}", response_model=TaxLotResponse, summary="Get a tax lot")
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_tax_lot(
    request: Request,
    lot_id: int,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    query: Annotated[QueryService, Depends(get_query_service)],
) -> TaxLot:
    return query.tax_lot(db, portfolio, lot_id)
