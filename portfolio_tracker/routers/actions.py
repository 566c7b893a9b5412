# portfolio_tracker/routers/actions.py
"""
Per-portfolio corporate action review.

- GET  /portfolios/{portfolio_id}/actions                       ?status=PENDING|APPROVED|REJECTED|APPLIED
- POST /portfolios/{portfolio_id}/actions/detect                create PENDING actions for held symbols
- GET  /portfolios/{portfolio_id}/actions/{action_id}           one action
- POST /portfolios/{portfolio_id}/actions/{action_id}/approve   approve and apply
- POST /portfolios/{portfolio_id}/actions/{action_id}/reject    reject
- POST /portfolios/{portfolio_id}/actions/{action_id}/apply     retry a failed application

Lifecycle:
    PENDING --approve--> APPROVED --apply--> APPLIED
    PENDING --reject---> REJECTED
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import (
    get_corporate_action_detector,
    get_corporate_action_workflow,
    get_current_principal,
    get_portfolio_with_owner_check,
)
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE, limiter
from portfolio_tracker.models import ActionStatus, Portfolio, PortfolioAction
from portfolio_tracker.schemas.actions import ApproveRequest, PortfolioActionResponse, RejectRequest
from portfolio_tracker.services.corporate_actions import CorporateActionDetector, CorporateActionWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Portfolio Actions"])


@router.get("/{portfolio_id}/actions", response_model=list[PortfolioActionResponse], summary="List actions")
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_actions(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
    status: ActionStatus | None = None,
) -> list[PortfolioAction]:
    return workflow.list_actions(db, portfolio.id, status)


@router.post(
    "/{portfolio_id}/actions/detect",
    response_model=list[PortfolioActionResponse],
    summary="Detect corporate actions",
)
@limiter.limit(RATE_LIMIT_WRITE)
def detect_actions(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    detector: Annotated[CorporateActionDetector, Depends(get_corporate_action_detector)],
) -> list[PortfolioAction]:
    """
    Match registered corporate actions against current holdings.

    Returns only the actions created by this call. A corporate action
    already known to the portfolio is never added twice.
    """
    return detector.detect(db, portfolio)


@router.get("/{portfolio_id}/actions/{action_id}", response_model=PortfolioActionResponse, summary="Get an action")
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_action(
    request: Request,
    action_id: int,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
) -> PortfolioAction:
    return workflow.get_action(db, portfolio.id, action_id)


@router.post(
    "/{portfolio_id}/actions/{action_id}/approve",
    response_model=PortfolioActionResponse,
    summary="Approve an action",
)
@limiter.limit(RATE_LIMIT_WRITE)
def approve_action(
    request: Request,
    action_id: int,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    principal_id: Annotated[str, Depends(get_current_principal)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
    body: ApproveRequest | None = None,
) -> PortfolioAction:
    """
    Approve a PENDING action and apply it.

    If application fails the response is still 200: the action stays
    APPROVED and apply_error says why. Retry with /apply.
    """
    notes = body.notes if body is not None else None
    return workflow.approve(db, portfolio, action_id, principal_id, notes)


@router.post(
    "/{portfolio_id}/actions/{action_id}/reject",
    response_model=PortfolioActionResponse,
    summary="Reject an action",
)
@limiter.limit(RATE_LIMIT_WRITE)
def reject_action(
    request: Request,
    action_id: int,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    principal_id: Annotated[str, Depends(get_current_principal)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
    body: RejectRequest | None = None,
) -> PortfolioAction:
    reason = body.reason if body is not None else None
    return workflow.reject(db, portfolio, action_id, principal_id, reason)


@router.post(
    "/{portfolio_id}/actions/{action_id}/apply",
    response_model=PortfolioActionResponse,
    summary="Apply an approved action",
)
@limiter.limit(RATE_LIMIT_WRITE)
def apply_action(
    request: Request,
    action_id: int,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
) -> PortfolioAction:
    """
    Apply an APPROVED action. Applying an APPLIED action is a no-op;
    a PENDING or REJECTED action fails with 409 ACTION_NOT_APPROVED.
    """
    return workflow.apply(db, portfolio, action_id)
