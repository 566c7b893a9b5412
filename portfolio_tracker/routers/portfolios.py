# portfolio_tracker/routers/portfolios.py
"""
Portfolio management endpoints.

- POST   /portfolios                  create (owner = bearer principal)
- GET    /portfolios                  list the principal's portfolios
- GET    /portfolios/{portfolio_id}   read
- PATCH  /portfolios/{portfolio_id}   rename, change currency or cost-basis method
- DELETE /portfolios/{portfolio_id}   delete; ?force=true when it has transactions
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import (
    get_current_principal,
    get_portfolio_service,
    get_portfolio_with_owner_check,
)
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE, limiter
from portfolio_tracker.models import Portfolio
from portfolio_tracker.schemas.portfolios import (
    PortfolioCreate,
    PortfolioListResponse,
    PortfolioResponse,
    PortfolioUpdate,
)
from portfolio_tracker.services.portfolios import PortfolioService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/portfolios",
    tags=["Portfolios"],
)


@router.post(
    "",
    response_model=PortfolioResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a portfolio",
)
@limiter.limit(RATE_LIMIT_WRITE)
def create_portfolio(
    request: Request,
    body: PortfolioCreate,
    db: Annotated[Session, Depends(get_db)],
    principal_id: Annotated[str, Depends(get_current_principal)],
    service: Annotated[PortfolioService, Depends(get_portfolio_service)],
) -> Portfolio:
    return service.create(
        db,
        owner_id=principal_id,
        name=body.name,
        base_currency=body.base_currency,
        cost_basis_method=body.cost_basis_method,
    )


@router.get(
    "",
    response_model=PortfolioListResponse,
    summary="List my portfolios",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_portfolios(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    principal_id: Annotated[str, Depends(get_current_principal)],
    service: Annotated[PortfolioService, Depends(get_portfolio_service)],
) -> dict:
    portfolios = service.list_for_owner(db, principal_id)
    return {"items": portfolios, "total": len(portfolios)}


@router.get(
    "/{portfolio_id}",
    response_model=PortfolioResponse,
    summary="Get a portfolio",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_portfolio(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
) -> Portfolio:
    return portfolio


@router.patch(
    "/{portfolio_id}",
    response_model=PortfolioResponse,
    summary="Update a portfolio",
)
@limiter.limit(RATE_LIMIT_WRITE)
def update_portfolio(
    request: Request,
    body: PortfolioUpdate,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PortfolioService, Depends(get_portfolio_service)],
) -> Portfolio:
    """
    Partial update. cost_basis_method can only change before the first SELL.
    """
    return service.update(
        db,
        portfolio,
        name=body.name,
        base_currency=body.base_currency,
        cost_basis_method=body.cost_basis_method,
    )


@router.delete(
    "/{portfolio_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a portfolio",
)
@limiter.limit(RATE_LIMIT_WRITE)
def delete_portfolio(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PortfolioService, Depends(get_portfolio_service)],
    force: Annotated[bool, Query(description="Delete even if it has transactions")] = False,
) -> Response:
    service.delete(db, portfolio, force=force)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
