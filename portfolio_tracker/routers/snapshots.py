# portfolio_tracker/routers/snapshots.py
"""
Performance snapshot endpoints.

- GET  /portfolios/{portfolio_id}/snapshots          most recent first, ?limit=30&offset=0
- GET  /portfolios/{portfolio_id}/snapshots/latest   newest snapshot
- GET  /portfolios/{portfolio_id}/snapshots/range    ?start_date=&end_date=, oldest first
- POST /portfolios/{portfolio_id}/snapshots          take (or retake) a snapshot

Snapshots are also written daily by the background scheduler when it is
enabled.
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_portfolio_with_owner_check, get_snapshot_service
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_ANALYTICS, RATE_LIMIT_DEFAULT, limiter
from portfolio_tracker.models import PerformanceSnapshot, Portfolio
from portfolio_tracker.schemas.performance import SnapshotCreate, SnapshotListResponse, SnapshotResponse
from portfolio_tracker.services.constants import DEFAULT_SNAPSHOT_LIMIT
from portfolio_tracker.services.performance import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Snapshots"])


@router.get("/{portfolio_id}/snapshots", response_model=SnapshotListResponse, summary="List snapshots")
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_snapshots(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[SnapshotService, Depends(get_snapshot_service)],
    limit: int = DEFAULT_SNAPSHOT_LIMIT,
    offset: int = 0,
) -> dict:
    items, total = service.list_snapshots(db, portfolio.id, limit=limit, offset=offset)
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.get("/{portfolio_id}/snapshots/latest", response_model=SnapshotResponse, summary="Latest snapshot")
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_latest_snapshot(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[SnapshotService, Depends(get_snapshot_service)],
) -> PerformanceSnapshot:
    return service.get_latest(db, portfolio.id)


@router.get("/{portfolio_id}/snapshots/range", response_model=list[SnapshotResponse], summary="Snapshots in a range")
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_snapshot_range(
    request: Request,
    start_date: date,
    end_date: date,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[SnapshotService, Depends(get_snapshot_service)],
) -> list[PerformanceSnapshot]:
    return service.get_range(db, portfolio.id, start_date, end_date)


@router.post(
    "/{portfolio_id}/snapshots",
    response_model=SnapshotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Take a snapshot",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def create_snapshot(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[SnapshotService, Depends(get_snapshot_service)],
    body: SnapshotCreate | None = None,
) -> PerformanceSnapshot:
    """An existing snapshot for the same day is returned unchanged."""
    as_of = body.as_of if body is not None else None
    return service.create_snapshot(db, portfolio, as_of)
