# portfolio_tracker/services/constants.py
"""
Centralized constants for the Portfolio Tracker services.

Single source of truth for business constants: calendar conventions,
numeric precision, solver limits, pagination caps and rate limits.

Usage:
    from portfolio_tracker.services.constants import (
        LONG_TERM_HOLDING_DAYS,
        IRR_MAX_ITERATIONS,
    )
"""

from decimal import Decimal


# =============================================================================
# FINANCIAL CALENDAR CONSTANTS
# =============================================================================

# Calendar days in a year, used for annualizing returns and IRR exponents
CALENDAR_DAYS_PER_YEAR: int = 365

# A lot held at least this many calendar days at sale date is long-term
LONG_TERM_HOLDING_DAYS: int = 365


# =============================================================================
# DECIMAL PRECISION
# =============================================================================

# Significant digits for all internal arithmetic (division included)
DECIMAL_PRECISION: int = 28

# Display quantization (applied only when rendering)
CURRENCY_PRECISION: Decimal = Decimal("0.01")
SHARE_PRECISION: Decimal = Decimal("0.00000001")
PERCENT_PRECISION: Decimal = Decimal("0.0001")
RATE_PRECISION: Decimal = Decimal("0.0000000001")

# Scale of every persisted quantity and amount (Numeric(28, 10) columns).
# Lot quantities, costs, commission shares and proceeds are held at this
# scale in memory too, so replayed and reloaded lots are identical.
STORAGE_SCALE: Decimal = Decimal("1E-10")

ZERO: Decimal = Decimal("0")
ONE: Decimal = Decimal("1")
HUNDRED: Decimal = Decimal("100")


# =============================================================================
# IRR SOLVER SETTINGS
# =============================================================================

# Iteration cap for each solver stage (Newton, then bisection)
IRR_MAX_ITERATIONS: int = 100

# Convergence: |f(r)| below this is a root
IRR_TOLERANCE: Decimal = Decimal("1E-10")

# Newton-Raphson starting point (10% annual return)
IRR_INITIAL_GUESS: Decimal = Decimal("0.1")

# Bisection bracket
IRR_LOWER_BOUND: Decimal = Decimal("-0.9999")
IRR_UPPER_BOUND: Decimal = Decimal("10.0")

# Derivatives smaller than this abandon Newton for bisection
IRR_MIN_DERIVATIVE: Decimal = Decimal("1E-18")


# =============================================================================
# PRICE SETTINGS
# =============================================================================

# Days to look back when a close is missing (weekends, holidays)
PRICE_FALLBACK_DAYS: int = 5

# Default benchmark for alpha when none is requested
DEFAULT_BENCHMARK_SYMBOL: str = "SPY"

# Snapshot lookup window around a requested date (days either side)
SNAPSHOT_SEARCH_WINDOW_DAYS: int = 7


# =============================================================================
# TAX SETTINGS
# =============================================================================

# Default harvest threshold as a signed percent
DEFAULT_HARVEST_THRESHOLD: Decimal = Decimal("-3")

MIN_TAX_YEAR: int = 1900
MAX_TAX_YEAR: int = 2100

# Share of the parent cost basis moved to a spun-off symbol when the action
# does not state one
SPINOFF_COST_ALLOCATION: Decimal = Decimal("0.10")


# =============================================================================
# PAGINATION / BATCH LIMITS
# =============================================================================

DEFAULT_LIST_LIMIT: int = 100
MAX_LIST_LIMIT: int = 1000

DEFAULT_SNAPSHOT_LIMIT: int = 30
MAX_SNAPSHOT_LIMIT: int = 365

# Maximum rows per import request (bulk body or CSV file)
MAX_IMPORT_ROWS: int = 5000

# Maximum CSV upload size in bytes (5 MB)
MAX_IMPORT_FILE_SIZE: int = 5 * 1024 * 1024


# =============================================================================
# RATE LIMITING
# =============================================================================

# Read-only endpoints
RATE_LIMIT_DEFAULT: str = "100/minute"

# Mutating endpoints (transactions, actions, portfolios)
RATE_LIMIT_WRITE: str = "30/minute"

# Analytics that hit the price oracle
RATE_LIMIT_ANALYTICS: str = "20/minute"

# Imports (bulk and CSV)
RATE_LIMIT_IMPORT: str = "5/minute"

# Health checks (load balancers poll these)
RATE_LIMIT_HEALTH: str = "200/minute"
