# portfolio_tracker/services/performance/returns.py
"""
Return calculations for the Performance Engine.

Pure functions over value series and cash flows. Everything runs in
Decimal, including the IRR solver and fractional powers.

Formulas:
    TWR (Modified Dietz per sub-period, flow at end of sub-period):
        r_i = (E_i − B_i − F_i) / B_i          skipped when B_i = 0
        TWR = ∏(1 + r_i) − 1
        annualized = (1 + TWR)^(365/days_used) − 1

    MWR (IRR), future-value form at the end date:
        f(r) = Σ a_k × (1 + r)^((end − d_k)/365) = 0
        a_k: −V(start) at start, −CF(t) per external flow, +V(end) at end
        Newton-Raphson from 0.1, bisection on [−0.9999, 10] as fallback

    Annualized return:
        ((V_end + withdrawals) / (V_start + deposits))^(1/years) − 1
        years = days / 365

Long loops call check_deadline() between sub-periods and iterations.
"""

import decimal
import logging
from datetime import date
from decimal import Decimal

from portfolio_tracker.services.constants import (
    CALENDAR_DAYS_PER_YEAR,
    HUNDRED,
    IRR_INITIAL_GUESS,
    IRR_LOWER_BOUND,
    IRR_MAX_ITERATIONS,
    IRR_MIN_DERIVATIVE,
    IRR_TOLERANCE,
    IRR_UPPER_BOUND,
    ONE,
    ZERO,
)
from portfolio_tracker.services.performance.types import (
    CashFlow,
    IrrResult,
    SubPeriodReturn,
    TwrComputation,
)
from portfolio_tracker.utils.context import check_deadline
from portfolio_tracker.utils.decimal_utils import DECIMAL_CONTEXT, safe_divide

logger = logging.getLogger(__name__)

_DAYS_PER_YEAR = Decimal(CALENDAR_DAYS_PER_YEAR)


def to_percent(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return value * HUNDRED


# =============================================================================
# TIME-WEIGHTED RETURN (TWR)
# =============================================================================

def modified_dietz_twr(
        values: dict[date, Decimal],
        flows: dict[date, Decimal],
        start: date,
        end: date,
) -> TwrComputation:
    """
    Time-weighted return, linking Modified Dietz sub-periods.

    [start, end] is split at every day with a nonzero external flow. A
    flow dated on `start` is already part of the starting value and is
    ignored.

    Args:
        values: Portfolio value at the close of each boundary day
                (start, end and every flow day)
        flows: Net external flow per day (deposits positive)
        start: First day of the period
        end: Last day of the period

    Returns:
        TwrComputation; twr is None when every sub-period started at zero

    Example:
        >>> modified_dietz_twr(
        ...     {date(2024, 1, 1): Decimal("10000"), date(2024, 7, 1): Decimal("16000"),
        ...      date(2024, 12, 31): Decimal("18000")},
        ...     {date(2024, 7, 1): Decimal("5000")},
        ...     date(2024, 1, 1), date(2024, 12, 31),
        ... ).twr
    """
    boundaries = sorted(d for d, amount in flows.items() if start < d <= end and amount != ZERO)
    if not boundaries or boundaries[-1] != end:
        boundaries.append(end)

    growth = ONE
    linked = 0
    days_used = (end - start).days
    sub_periods: list[SubPeriodReturn] = []
    previous = start

    for boundary in boundaries:
        check_deadline("TWR sub-periods")

        begin_value = values[previous]
        end_value = values[boundary]
        flow = flows.get(boundary, ZERO)

        period_return = safe_divide(end_value - begin_value - flow, begin_value)
        if period_return is None:
            days_used -= (boundary - previous).days
        else:
            growth = DECIMAL_CONTEXT.multiply(growth, ONE + period_return)
            linked += 1

        sub_periods.append(SubPeriodReturn(
            start_date=previous,
            end_date=boundary,
            start_value=begin_value,
            end_value=end_value,
            cash_flow=flow,
            period_return=period_return,
        ))
        previous = boundary

    twr = growth - ONE if linked else None
    return TwrComputation(twr=twr, days_used=days_used, sub_periods=sub_periods)


def annualize_return(total_return: Decimal | None, days: int) -> Decimal | None:
    """
    Annualize a return over `days` calendar days.

    Formula: (1 + r)^(365/days) − 1

    Returns:
        Annualized return, None if days <= 0, −1 for a total loss
    """
    if total_return is None or days <= 0:
        return None

    base = ONE + total_return
    if base <= ZERO:
        return Decimal("-1")

    exponent = DECIMAL_CONTEXT.divide(_DAYS_PER_YEAR, Decimal(days))
    return DECIMAL_CONTEXT.power(base, exponent) - ONE


def annualized_return(
        start_value: Decimal,
        end_value: Decimal,
        deposits: Decimal,
        withdrawals: Decimal,
        days: int,
) -> Decimal | None:
    """
    ((V_end + withdrawals) / (V_start + deposits))^(1/years) − 1

    Args:
        deposits, withdrawals: Totals over the period, both non-negative
        days: Calendar days in the period

    Returns:
        Annualized return, or None when the period or the invested base is empty
    """
    if days <= 0:
        return None
    invested = start_value + deposits
    if invested <= ZERO:
        return None

    ratio = DECIMAL_CONTEXT.divide(end_value + withdrawals, invested)
    if ratio <= ZERO:
        return Decimal("-1")

    exponent = DECIMAL_CONTEXT.divide(_DAYS_PER_YEAR, Decimal(days))  # 1 / years
    return DECIMAL_CONTEXT.power(ratio, exponent) - ONE


# =============================================================================
# MONEY-WEIGHTED RETURN (IRR)
# =============================================================================

def mwr_cash_flows(
        start: date,
        end: date,
        start_value: Decimal,
        end_value: Decimal,
        external_flows: dict[date, Decimal],
) -> list[CashFlow]:
    """
    IRR terms from the investor's side.

    The starting value and deposits are money put in (negative), the
    ending value is money taken out (positive). Flows on the start day
    are inside the starting value already.
    """
    terms = [CashFlow(start, -start_value)]
    for day in sorted(external_flows):
        amount = external_flows[day]
        if start < day <= end and amount != ZERO:
            terms.append(CashFlow(day, -amount))
    terms.append(CashFlow(end, end_value))
    return [term for term in terms if term.amount != ZERO]


def _exponents(flows: list[CashFlow], end: date) -> list[tuple[Decimal, Decimal]]:
    return [
        (flow.amount, DECIMAL_CONTEXT.divide(Decimal((end - flow.date).days), _DAYS_PER_YEAR))
        for flow in flows
    ]


def _npv(terms: list[tuple[Decimal, Decimal]], rate: Decimal) -> tuple[Decimal, Decimal]:
    """f(r) and f'(r) of the future-value equation."""
    base = ONE + rate
    value = ZERO
    derivative = ZERO
    for amount, years in terms:
        if years == ZERO:
            value += amount
            continue
        grown = DECIMAL_CONTEXT.power(base, years)
        value += DECIMAL_CONTEXT.multiply(amount, grown)
        derivative += DECIMAL_CONTEXT.divide(DECIMAL_CONTEXT.multiply(DECIMAL_CONTEXT.multiply(amount, years), grown), base)
    return value, derivative


def solve_irr(
        flows: list[CashFlow],
        end: date,
        initial_guess: Decimal = IRR_INITIAL_GUESS,
        tolerance: Decimal = IRR_TOLERANCE,
        max_iterations: int = IRR_MAX_ITERATIONS,
) -> IrrResult:
    """
    Solve Σ a_k × (1 + r)^((end − d_k)/365) = 0 for r.

    Newton-Raphson from `initial_guess`; when the derivative vanishes or a
    step leaves [IRR_LOWER_BOUND, IRR_UPPER_BOUND], switches to bisection
    on that bracket. Converges when |f(r)| < tolerance; each stage is
    capped at `max_iterations`.

    Returns:
        IrrResult; on failure rate holds the best estimate seen

    Example:
        >>> solve_irr([CashFlow(date(2024, 1, 1), Decimal("-10000")),
        ...            CashFlow(date(2025, 1, 1), Decimal("11000"))], date(2025, 1, 1)).rate
    """
    has_negative = any(f.amount < ZERO for f in flows)
    has_positive = any(f.amount > ZERO for f in flows)
    if not (has_negative and has_positive):
        logger.warning("IRR requires both positive and negative cash flows")
        return IrrResult(rate=None, converged=False, iterations=0, method="none")

    terms = _exponents(flows, end)
    best_rate: Decimal | None = None
    best_residual: Decimal | None = None
    iterations = 0

    def remember(rate: Decimal, residual: Decimal) -> None:
        nonlocal best_rate, best_residual
        if best_residual is None or abs(residual) < best_residual:
            best_rate, best_residual = rate, abs(residual)

    # Newton-Raphson
    rate = initial_guess
    try:
        for _ in range(max_iterations):
            check_deadline("IRR solver")
            iterations += 1
            value, derivative = _npv(terms, rate)
            remember(rate, value)
            if abs(value) < tolerance:
                return IrrResult(rate=rate, converged=True, iterations=iterations, method="newton", residual=abs(value))
            if abs(derivative) < IRR_MIN_DERIVATIVE:
                logger.debug("IRR derivative vanished, switching to bisection")
                break
            candidate = rate - DECIMAL_CONTEXT.divide(value, derivative)
            if candidate < IRR_LOWER_BOUND or candidate > IRR_UPPER_BOUND:
                logger.debug(f"IRR Newton step left the bracket ({candidate}), switching to bisection")
                break
            rate = candidate
    except (decimal.InvalidOperation, decimal.Overflow):
        logger.debug("IRR Newton iteration overflowed, switching to bisection")

    # Bisection
    low, high = IRR_LOWER_BOUND, IRR_UPPER_BOUND
    f_low, _ = _npv(terms, low)
    f_high, _ = _npv(terms, high)
    remember(low, f_low)
    remember(high, f_high)

    if (f_low < ZERO) == (f_high < ZERO):
        logger.warning(f"IRR did not converge: no sign change on [{low}, {high}]")
        return IrrResult(rate=best_rate, converged=False, iterations=iterations, method="bisection", residual=best_residual)

    for _ in range(max_iterations):
        check_deadline("IRR solver")
        iterations += 1
        mid = (low + high) / 2
        f_mid, _ = _npv(terms, mid)
        remember(mid, f_mid)
        if abs(f_mid) < tolerance:
            return IrrResult(rate=mid, converged=True, iterations=iterations, method="bisection", residual=abs(f_mid))
        if (f_mid < ZERO) == (f_low < ZERO):
            low, f_low = mid, f_mid
        else:
            high = mid

    logger.warning(f"IRR did not converge after {iterations} iterations")
    return IrrResult(rate=best_rate, converged=False, iterations=iterations, method="bisection", residual=best_residual)


# =============================================================================
# BENCHMARK
# =============================================================================

def benchmark_values(
        prices: dict[date, Decimal],
        start: date,
        start_value: Decimal,
        flows: dict[date, Decimal],
        dates: list[date],
) -> dict[date, Decimal]:
    """
    Value of a buy-and-hold position in the benchmark with the portfolio's flows.

    The starting value buys units at the start close; each external flow
    buys (or sells) units at that day's close.

    Args:
        prices: Benchmark close for every date in `dates` and `start`
        dates: Boundary days to value, ascending

    Returns:
        Benchmark value per boundary day
    """
    units = DECIMAL_CONTEXT.divide(start_value, prices[start])
    values = {start: start_value}
    for day in dates:
        if day == start:
            continue
        flow = flows.get(day, ZERO)
        if flow != ZERO:
            units += DECIMAL_CONTEXT.divide(flow, prices[day])
        values[day] = DECIMAL_CONTEXT.multiply(units, prices[day])
    return values
