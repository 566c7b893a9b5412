# portfolio_tracker/routers/transactions.py
"""
Transaction endpoints.

- POST   /portfolios/{portfolio_id}/transactions   record one transaction
- GET    /portfolios/{portfolio_id}/transactions   list in event order (?symbol, dates, type, paging)
- GET    /transactions/{transaction_id}            read
- PUT    /transactions/{transaction_id}            replace fields, re-derive the portfolio
- DELETE /transactions/{transaction_id}            remove, re-derive the portfolio

Every write re-derives lots, holdings and realized gains before it
returns, so a following read sees the new state.
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import (
    get_event_store,
    get_portfolio_with_owner_check,
    get_transaction_with_owner_check,
)
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE, limiter
from portfolio_tracker.models import Portfolio, Transaction, TransactionType
from portfolio_tracker.schemas.pagination import PaginationMeta
from portfolio_tracker.schemas.transactions import (
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionUpdate,
)
from portfolio_tracker.schemas.validators import validate_date_order
from portfolio_tracker.services.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from portfolio_tracker.services.events import EventStore
from portfolio_tracker.services.exceptions import InvalidDateRangeError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Transactions"])


@router.post(
    "/portfolios/{portfolio_id}/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a transaction",
)
@limiter.limit(RATE_LIMIT_WRITE)
def create_transaction(
    request: Request,
    body: TransactionCreate,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[EventStore, Depends(get_event_store)],
) -> Transaction:
    """
    Record a transaction and update lots and holdings.

    A SELL above the open quantity at its date fails with 400
    INSUFFICIENT_SHARES and changes nothing.
    """
    return store.append(db, portfolio, body.to_input())


@router.get(
    "/portfolios/{portfolio_id}/transactions",
    response_model=TransactionListResponse,
    summary="List transactions",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_transactions(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[EventStore, Depends(get_event_store)],
    symbol: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    transaction_type: TransactionType | None = None,
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=MAX_LIST_LIMIT)] = DEFAULT_LIST_LIMIT,
) -> dict:
    try:
        validate_date_order(start_date, end_date)
    except ValueError:
        raise InvalidDateRangeError(start_date, end_date)

    items, total = store.list_transactions(
        db,
        portfolio.id,
        symbol=symbol,
        start_date=start_date,
        end_date=end_date,
        transaction_type=transaction_type,
        skip=skip,
        limit=limit,
    )
    return {"items": items, "pagination": PaginationMeta.create(total=total, skip=skip, limit=limit)}


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a transaction",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_transaction(
    request: Request,
    tx: Annotated[Transaction, Depends(get_transaction_with_owner_check)],
) -> Transaction:
    return tx


@router.put(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Replace a transaction",
)
@limiter.limit(RATE_LIMIT_WRITE)
def update_transaction(
    request: Request,
    body: TransactionUpdate,
    tx: Annotated[Transaction, Depends(get_transaction_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[EventStore, Depends(get_event_store)],
) -> Transaction:
    return store.update(db, tx.portfolio, tx, body.to_input())


@router.delete(
    "/transactions/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a transaction",
)
@limiter.limit(RATE_LIMIT_WRITE)
def delete_transaction(
    request: Request,
    tx: Annotated[Transaction, Depends(get_transaction_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[EventStore, Depends(get_event_store)],
) -> Response:
    """Realized gains produced by a deleted SELL are kept."""
    store.delete(db, tx.portfolio, tx)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
