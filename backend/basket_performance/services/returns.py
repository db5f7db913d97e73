"""Pure return calculators: CAGR, XIRR, SIP simulation and weighted averages.

All rates are returned as percentages (``12.5`` means 12.5%). ``None`` is the
"not available" marker; callers must never treat it as zero.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Sequence

from basket_performance.core.errors import InsufficientCashflows
from basket_performance.services.timeseries import PriceSeries, resolve_nearest_on_or_after, shift_months

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.25
XIRR_DAY_COUNT = 365.0

XIRR_MAX_ITERATIONS = 100
XIRR_BISECTION_ITERATIONS = 300
XIRR_NPV_TOLERANCE = 1e-6
XIRR_RATE_TOLERANCE = 1e-7
_XIRR_INITIAL_GUESS = 0.1
_XIRR_DERIVATIVE_STEP = 1e-6
_XIRR_BRACKET_GRID = (-0.9999, -0.99, -0.9, -0.75, -0.5, -0.25, 0.0, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 100.0, 1000.0)


@dataclass(frozen=True)
class CashFlow:
    date: date
    amount: float


def compound_growth_rate(start_price: float | None, end_price: float | None, elapsed_days: float) -> float | None:
    """Annualised growth in percent, ``None`` when the inputs cannot define one."""

    if start_price is None or end_price is None:
        return None
    if start_price <= 0 or end_price <= 0 or elapsed_days <= 0:
        return None
    return annualise_factor(end_price / start_price, elapsed_days)


def annualise_factor(factor: float, window_days: float) -> float | None:
    """Turn a growth factor over ``window_days`` into an annual percentage."""

    if factor <= 0 or window_days <= 0:
        return None
    years = window_days / DAYS_PER_YEAR
    try:
        return (factor ** (1.0 / years) - 1.0) * 100.0
    except OverflowError:
        # too large to represent: report as not available
        return None


# XIRR


def require_solvable(cashflows: Sequence[CashFlow]) -> list[CashFlow]:
    """Return the flows sorted by date or raise :class:`InsufficientCashflows`."""

    if len(cashflows) < 2:
        raise InsufficientCashflows(f"need at least 2 cashflows, got {len(cashflows)}")
    if not any(cf.amount > 0 for cf in cashflows) or not any(cf.amount < 0 for cf in cashflows):
        raise InsufficientCashflows("need both positive and negative cashflows")
    return sorted(cashflows, key=lambda cf: cf.date)


def _year_offsets(flows: Sequence[CashFlow]) -> list[float]:
    origin = flows[0].date
    return [(cf.date - origin).days / XIRR_DAY_COUNT for cf in flows]


def _npv(rate: float, offsets: Sequence[float], amounts: Sequence[float]) -> float:
    if rate <= -1.0:
        return math.nan
    base = 1.0 + rate
    try:
        return sum(amount / base**offset for amount, offset in zip(amounts, offsets))
    except (OverflowError, ZeroDivisionError):
        return math.nan


def _newton(offsets: Sequence[float], amounts: Sequence[float]) -> float | None:
    rate = _XIRR_INITIAL_GUESS
    for _ in range(XIRR_MAX_ITERATIONS):
        value = _npv(rate, offsets, amounts)
        if not math.isfinite(value):
            return None
        if abs(value) < XIRR_NPV_TOLERANCE:
            return rate
        step = _XIRR_DERIVATIVE_STEP
        slope = (_npv(rate + step, offsets, amounts) - _npv(rate - step, offsets, amounts)) / (2 * step)
        if not math.isfinite(slope) or slope == 0:
            return None
        candidate = rate - value / slope
        if candidate <= -1.0:
            # keep the iterate inside the domain of (1 + r) ** t
            candidate = (rate - 1.0) / 2.0
        if abs(candidate - rate) < XIRR_RATE_TOLERANCE:
            return candidate
        rate = candidate
    return None


def _bisect(offsets: Sequence[float], amounts: Sequence[float]) -> float | None:
    bracket: tuple[float, float] | None = None
    previous = None
    for point in _XIRR_BRACKET_GRID:
        value = _npv(point, offsets, amounts)
        if not math.isfinite(value):
            continue
        if value == 0:
            return point
        if previous is not None and (previous[1] < 0) != (value < 0):
            bracket = (previous[0], point)
            break
        previous = (point, value)
    if bracket is None:
        return None

    lo, hi = bracket
    npv_lo = _npv(lo, offsets, amounts)
    for _ in range(XIRR_BISECTION_ITERATIONS):
        mid = (lo + hi) / 2.0
        npv_mid = _npv(mid, offsets, amounts)
        if not math.isfinite(npv_mid):
            return None
        if abs(npv_mid) < XIRR_NPV_TOLERANCE or (hi - lo) / 2.0 < XIRR_RATE_TOLERANCE:
            return mid
        if (npv_lo < 0) == (npv_mid < 0):
            lo, npv_lo = mid, npv_mid
        else:
            hi = mid
    return None


def solve_xirr(cashflows: Sequence[CashFlow]) -> float | None:
    """Solve the annual internal rate of return as a fraction.

    Raises :class:`InsufficientCashflows` for ledgers without a sign change;
    returns ``None`` when neither Newton-Raphson nor bisection converges.
    """

    flows = require_solvable(cashflows)
    offsets = _year_offsets(flows)
    amounts = [cf.amount for cf in flows]
    rate = _newton(offsets, amounts)
    if rate is None:
        rate = _bisect(offsets, amounts)
    return rate


def xirr(cashflows: Sequence[CashFlow]) -> float | None:
    """Internal rate of return in percent, ``None`` when indeterminate."""

    try:
        rate = solve_xirr(cashflows)
    except InsufficientCashflows as exc:
        logger.debug("XIRR skipped: %s", exc)
        return None
    if rate is None:
        logger.debug("XIRR did not converge for %d cashflows", len(cashflows))
        return None
    return rate * 100.0


# SIP simulation


@dataclass
class PeriodicInvestmentResult:
    instrument_id: str
    instalment: float
    purchases: list[CashFlow] = field(default_factory=list)
    units: float = 0.0
    current_value: float | None = None
    valuation_date: date | None = None

    @property
    def invested(self) -> float:
        return -sum(cf.amount for cf in self.purchases)

    @property
    def terminal_flow(self) -> CashFlow | None:
        if self.current_value is None or self.valuation_date is None:
            return None
        return CashFlow(self.valuation_date, self.current_value)

    def ledger(self) -> list[CashFlow]:
        terminal = self.terminal_flow
        return [*self.purchases, terminal] if terminal else list(self.purchases)

    @property
    def xirr(self) -> float | None:
        return xirr(self.ledger())


def simulate_periodic_investment(
    series: PriceSeries,
    start: date,
    amount: float,
    weight_fraction: float,
    *,
    periods: int,
    tolerance_days: int,
    frequency_months: int = 1,
) -> PeriodicInvestmentResult:
    """Buy ``amount * weight_fraction`` every ``frequency_months`` from ``start``.

    Each instalment executes at the first price on or after its due date
    (within ``tolerance_days``); instalments without a match are skipped. The
    holding is valued at the latest available price.
    """

    instalment = amount * weight_fraction
    result = PeriodicInvestmentResult(instrument_id=series.instrument_id, instalment=instalment)
    latest = series.latest()
    if latest is None or instalment <= 0:
        return result

    for period in range(periods):
        due = shift_months(start, period * frequency_months)
        if due > latest.date:
            break
        point = resolve_nearest_on_or_after(series, due, tolerance_days)
        if point is None:
            continue
        result.units += instalment / point.price
        result.purchases.append(CashFlow(point.date, -instalment))

    if result.units > 0:
        result.current_value = result.units * latest.price
        result.valuation_date = latest.date
    return result


# Aggregation


def weighted_average(values: Mapping[str, float | None], weights: Mapping[str, float]) -> float | None:
    """Weight-average the defined values, renormalising over the instruments that have one."""

    defined: list[tuple[float, float]] = []
    for key, value in values.items():
        if value is None or (isinstance(value, float) and math.isnan(value)):
            continue
        weight = weights.get(key, 0.0)
        if weight > 0:
            defined.append((value, weight))
    total = sum(weight for _, weight in defined)
    if total <= 0:
        return None
    return sum(value * (weight / total) for value, weight in defined)


def merge_ledgers(ledgers: Iterable[Sequence[CashFlow]]) -> list[CashFlow]:
    merged = [cf for ledger in ledgers for cf in ledger]
    return sorted(merged, key=lambda cf: cf.date)


__all__ = [
    "CashFlow",
    "DAYS_PER_YEAR",
    "PeriodicInvestmentResult",
    "annualise_factor",
    "compound_growth_rate",
    "merge_ledgers",
    "require_solvable",
    "simulate_periodic_investment",
    "solve_xirr",
    "weighted_average",
    "xirr",
]
