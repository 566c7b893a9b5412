# portfolio_tracker/routers/holdings.py
"""
Holdings and realized-gain read endpoints.

- GET /portfolios/{portfolio_id}/holdings            open positions, by symbol
- GET /portfolios/{portfolio_id}/holdings/{symbol}   one position
- GET /portfolios/{portfolio_id}/realized-gains      ?symbol=&year=
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_portfolio_with_owner_check, get_query_service
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_DEFAULT, limiter
from portfolio_tracker.models import Holding, Portfolio, RealizedGain
from portfolio_tracker.schemas.holdings import HoldingResponse, RealizedGainResponse
from portfolio_tracker.services.query import QueryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Holdings"])


@router.get("/{portfolio_id}/holdings", response_model=list[HoldingResponse], summary="List holdings")
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_holdings(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    query: Annotated[QueryService, Depends(get_query_service)],
) -> list[Holding]:
    """Positions with a quantity above zero. Quantity and basis equal the sum of the open lots."""
    return query.holdings(db, portfolio)


@router.get("/{portfolio_id}/holdings/{symbol}", response_model=HoldingResponse, summary="Get a holding")
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_holding(
    request: Request,
    symbol: str,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    query: Annotated[QueryService, Depends(get_query_service)],
) -> Holding:
    return query.holding(db, portfolio, symbol)


@router.get(
    "/{portfolio_id}/realized-gains",
    response_model=list[RealizedGainResponse],
    summary="List realized gains",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_realized_gains(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    query: Annotated[QueryService, Depends(get_query_service)],
    symbol: str | None = None,
    year: int | None = None,
) -> list[RealizedGain]:
    return query.realized_gains(db, portfolio, symbol=symbol, year=year)
