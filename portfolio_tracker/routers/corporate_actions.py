# portfolio_tracker/routers/corporate_actions.py
"""
Global corporate action registry.

- POST /corporate-actions   register a split, dividend, merger or ticker change
- GET  /corporate-actions   list, ?symbol=

Registration is limited to ADMIN_PRINCIPAL_IDS when that setting is
non-empty. Registering an action does not touch any portfolio; it is
matched against holdings by detection.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_corporate_action_workflow, get_current_principal
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE, limiter
from portfolio_tracker.models import CorporateAction
from portfolio_tracker.schemas.actions import CorporateActionCreate, CorporateActionResponse
from portfolio_tracker.services.corporate_actions import CorporateActionWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/corporate-actions", tags=["Corporate Actions"])


@router.post(
    "",
    response_model=CorporateActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a corporate action",
)
@limiter.limit(RATE_LIMIT_WRITE)
def register_corporate_action(
    request: Request,
    body: CorporateActionCreate,
    principal_id: Annotated[str, Depends(get_current_principal)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
) -> CorporateAction:
    """
    Raises **409** CORPORATE_ACTION_EXISTS for a duplicate (symbol, type, date).
    """
    return workflow.register(db, principal_id, body.to_input())


@router.get("", response_model=list[CorporateActionResponse], summary="List corporate actions")
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_corporate_actions(
    request: Request,
    principal_id: Annotated[str, Depends(get_current_principal)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[CorporateActionWorkflow, Depends(get_corporate_action_workflow)],
    symbol: str | None = None,
) -> list[CorporateAction]:
    return workflow.list_corporate_actions(db, symbol)
