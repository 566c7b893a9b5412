# portfolio_tracker/utils/context.py
"""
Request context management for the Portfolio Tracker.

This module provides context storage for request-scoped data:
- Correlation ID for request tracing
- Deadline for long-running computations (IRR, replays, snapshot rebuilds)
- Portfolio currently being mutated (added to log records)

Uses Python's contextvars, which propagate into Starlette's threadpool
and through async/await calls.

Usage:
    from portfolio_tracker.utils.context import set_deadline, check_deadline

    # In middleware
    set_deadline(30)

    # Between iterations of a long computation
    check_deadline()
"""

import time
from contextvars import ContextVar

from portfolio_tracker.services.exceptions import DeadlineExceededError

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Absolute monotonic timestamp after which work must stop
_deadline_var: ContextVar[float | None] = ContextVar("deadline", default=None)

_portfolio_id_var: ContextVar[int | None] = ContextVar("portfolio_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Get the current request's correlation ID, or None if not set."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID for the current request.

    Called by middleware at the start of each request.
    """
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID at the end of a request."""
    _correlation_id_var.set(None)


# =============================================================================
# DEADLINE
# =============================================================================

def set_deadline(seconds: float | None) -> None:
    """
    Arm a deadline `seconds` from now. None disarms it.

    Args:
        seconds: Budget in seconds for the current unit of work
    """
    if seconds is None:
        _deadline_var.set(None)
    else:
        _deadline_var.set(time.monotonic() + seconds)


def clear_deadline() -> None:
    _deadline_var.set(None)


def remaining_time() -> float | None:
    """Seconds left before the deadline, or None when no deadline is armed."""
    deadline = _deadline_var.get()
    if deadline is None:
        return None
    return deadline - time.monotonic()


def check_deadline(operation: str = "operation") -> None:
    """
    Raise DeadlineExceededError if the current deadline has passed.

    Long computations call this between iterations and sub-periods.
    Writes are wrapped in a database transaction, so raising here
    leaves no partial state behind.

    Args:
        operation: Name of the computation, used in the error message
    """
    remaining = remaining_time()
    if remaining is not None and remaining <= 0:
        raise DeadlineExceededError(operation)


# =============================================================================
# PORTFOLIO SCOPE
# =============================================================================

def get_portfolio_scope() -> int | None:
    """Portfolio currently being mutated by this context, if any."""
    return _portfolio_id_var.get()


def set_portfolio_scope(portfolio_id: int | None) -> None:
    _portfolio_id_var.set(portfolio_id)
