# portfolio_tracker/services/corporate_actions/__init__.py
"""
Corporate actions: global registry, per-portfolio detection and the
review workflow (PENDING → APPROVED → APPLIED, or REJECTED).
"""

from portfolio_tracker.services.corporate_actions.detector import CorporateActionDetector, describe_action
from portfolio_tracker.services.corporate_actions.workflow import (
    TRANSITIONS,
    CorporateActionInput,
    CorporateActionWorkflow,
    next_status,
)

__all__ = [
    "CorporateActionDetector",
    "describe_action",
    "TRANSITIONS",
    "CorporateActionInput",
    "CorporateActionWorkflow",
    "next_status",
]
