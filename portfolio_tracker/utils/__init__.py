# portfolio_tracker/utils/__init__.py
"""
Cross-cutting utilities.

- logging: setup with correlation ID and portfolio fields
- context: request-scoped correlation ID, deadline and portfolio scope
- decimal_utils: Decimal context, rounding and safe division
- date_utils: UTC dates and holding-period rules

Usage:
    from portfolio_tracker.utils import setup_logging
    from portfolio_tracker.utils import check_deadline
"""

from portfolio_tracker.utils.context import (
    check_deadline,
    clear_correlation_id,
    clear_deadline,
    get_correlation_id,
    set_correlation_id,
    set_deadline,
)
from portfolio_tracker.utils.logging import setup_logging

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "set_deadline",
    "clear_deadline",
    "check_deadline",
]
