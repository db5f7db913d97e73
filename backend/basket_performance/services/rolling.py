"""Rolling window return analysis for single instruments and weighted baskets.

For every historical entry date ``T`` the analyzer measures the annualised
return of holding until the calendar date nearest ``T + W``. Baskets are
evaluated on the *common calendar* (dates on which every instrument with data
has a price) so the weighted factor at each ``T`` is fully defined.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Literal, Mapping, Sequence

import numpy as np
import pandas as pd

from basket_performance.config import AppSettings
from basket_performance.core.errors import InsufficientWindowCoverage
from basket_performance.services.baskets import Basket
from basket_performance.services.returns import DAYS_PER_YEAR
from basket_performance.services.timeseries import PriceSeries

logger = logging.getLogger(__name__)

ReturnModel = Literal["buy_and_hold", "rebalanced"]
RollingStatus = Literal["ok", "insufficient"]


@dataclass(frozen=True)
class RollingConfig:
    window_days: int = 1095
    tolerance_days: int = 7
    min_weight_coverage: float = 0.99
    return_model: ReturnModel = "buy_and_hold"
    min_samples: int = 2

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "RollingConfig":
        return cls(
            window_days=settings.rolling_window_days,
            tolerance_days=settings.match_tolerance_days,
            min_weight_coverage=settings.min_weight_coverage,
            return_model=settings.return_model,
        )


@dataclass(frozen=True)
class RollingStats:
    mean: float
    median: float
    min: float
    max: float
    std_dev: float
    positive_percentage: float
    sample_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RollingWindowSeries:
    """Matched ``(start, end)`` pairs and their annualised returns in percent."""

    start_dates: list[date] = field(default_factory=list)
    end_dates: list[date] = field(default_factory=list)
    returns: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.returns)


@dataclass
class InstrumentRollingStats:
    instrument_id: str
    display_name: str
    status: RollingStatus
    stats: RollingStats | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "instrument_id": self.instrument_id,
            "display_name": self.display_name,
            "status": self.status,
        }
        payload.update(_stats_fields(self.stats))
        return payload


@dataclass
class RollingSummary:
    status: RollingStatus
    window_days: int
    return_model: ReturnModel
    basket: RollingStats | None = None
    instruments: list[InstrumentRollingStats] = field(default_factory=list)
    window_start: date | None = None
    window_end: date | None = None
    sample_count: int = 0
    risk_level: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "window_days": self.window_days,
            "return_model": self.return_model,
            "basket": _stats_fields(self.basket),
            "instruments": [item.to_dict() for item in self.instruments],
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "sample_count": self.sample_count,
            "risk_level": self.risk_level,
        }


def _stats_fields(stats: RollingStats | None) -> dict[str, Any]:
    keys = ("mean", "median", "min", "max", "std_dev", "positive_percentage", "sample_count")
    if stats is None:
        return {key: None for key in keys}
    return stats.to_dict()


# Calendar alignment


def common_calendar(series_by_instrument: Mapping[str, PriceSeries]) -> pd.DataFrame:
    """Inner-join the non-empty series on date; columns are instrument ids."""

    columns = [series.to_pandas() for series in series_by_instrument.values() if series]
    if not columns:
        return pd.DataFrame()
    frame = pd.concat(columns, axis=1, join="inner").sort_index()
    return frame.dropna()


def match_window_ends(days: np.ndarray, window_days: int, tolerance_days: int) -> np.ndarray:
    """For each start index return the index nearest ``day + window`` or ``-1``.

    ``days`` must be ascending integer day ordinals. Ties resolve to the
    earlier date.
    """

    if days.size == 0:
        return np.empty(0, dtype=np.int64)
    targets = days + window_days
    right = np.searchsorted(days, targets, side="left")
    left = right - 1
    right_c = np.clip(right, 0, days.size - 1)
    left_c = np.clip(left, 0, days.size - 1)

    right_diff = np.where(right < days.size, np.abs(days[right_c] - targets), np.iinfo(np.int64).max)
    left_diff = np.where(left >= 0, np.abs(days[left_c] - targets), np.iinfo(np.int64).max)
    best = np.where(left_diff <= right_diff, left_c, right_c)
    best_diff = np.minimum(left_diff, right_diff)

    starts = np.arange(days.size)
    valid = (best_diff <= tolerance_days) & (best > starts)
    return np.where(valid, best, -1)


def _day_ordinals(index: pd.DatetimeIndex) -> np.ndarray:
    return index.values.astype("datetime64[D]").astype(np.int64)


def _basket_index(prices: np.ndarray, weight_vector: np.ndarray) -> np.ndarray:
    """Daily rebalanced basket level starting at 1.0."""

    relatives = prices[1:] / prices[:-1]
    daily = relatives @ weight_vector
    return np.concatenate(([1.0], np.cumprod(daily)))


def rolling_window_returns(
    frame: pd.DataFrame,
    weights: Mapping[str, float],
    config: RollingConfig,
) -> RollingWindowSeries:
    """Annualised window returns for every start date in ``frame``.

    ``frame`` holds aligned prices (one column per instrument). ``weights``
    are fractions of the whole basket; instruments missing from ``frame``
    reduce the realised coverage, and start dates whose coverage falls below
    ``config.min_weight_coverage`` are dropped.
    """

    result = RollingWindowSeries()
    if frame.empty:
        return result

    columns = list(frame.columns)
    weight_vector = np.array([weights.get(column, 0.0) for column in columns], dtype="float64")
    prices = frame.to_numpy(dtype="float64")
    days = _day_ordinals(frame.index)
    ends = match_window_ends(days, config.window_days, config.tolerance_days)

    starts = np.nonzero(ends >= 0)[0]
    if starts.size == 0:
        return result
    stops = ends[starts]

    start_prices = prices[starts]
    end_prices = prices[stops]
    usable = np.isfinite(start_prices) & np.isfinite(end_prices) & (start_prices > 0) & (end_prices > 0)
    coverage = (usable * weight_vector).sum(axis=1)
    covered = coverage >= config.min_weight_coverage - 1e-12

    if config.return_model == "rebalanced":
        normalised = weight_vector / weight_vector.sum() if weight_vector.sum() > 0 else weight_vector
        level = _basket_index(prices, normalised)
        factors = level[stops] / level[starts]
    else:
        ratios = np.where(usable, end_prices / np.where(usable, start_prices, 1.0), 0.0)
        with np.errstate(divide="ignore", invalid="ignore"):
            factors = (ratios * weight_vector).sum(axis=1) / coverage

    # always annualised over the nominal window, not the matched span
    years = config.window_days / DAYS_PER_YEAR
    keep = covered & np.isfinite(factors) & (factors > 0)
    annualised = (np.power(factors[keep], 1.0 / years) - 1.0) * 100.0

    index_dates = frame.index
    result.start_dates = [index_dates[i].date() for i in starts[keep]]
    result.end_dates = [index_dates[j].date() for j in stops[keep]]
    result.returns = annualised.tolist()
    return result


def summarise_returns(returns: Sequence[float], *, min_samples: int = 2) -> RollingStats:
    """Distribution statistics; raises when fewer than ``min_samples`` windows exist."""

    if len(returns) < min_samples:
        raise InsufficientWindowCoverage(len(returns), min_samples)
    values = np.asarray(returns, dtype="float64")
    return RollingStats(
        mean=float(values.mean()),
        median=float(np.median(values)),
        min=float(values.min()),
        max=float(values.max()),
        std_dev=float(values.std(ddof=0)),
        positive_percentage=float((values > 0).mean() * 100.0),
        sample_count=int(values.size),
    )


def instrument_rolling_stats(
    series: PriceSeries,
    config: RollingConfig,
    *,
    display_name: str | None = None,
) -> InstrumentRollingStats:
    name = display_name or series.instrument_id
    frame = common_calendar({series.instrument_id: series})
    windows = rolling_window_returns(frame, {series.instrument_id: 1.0}, config)
    try:
        stats = summarise_returns(windows.returns, min_samples=config.min_samples)
    except InsufficientWindowCoverage:
        return InstrumentRollingStats(series.instrument_id, name, "insufficient")
    return InstrumentRollingStats(series.instrument_id, name, "ok", stats)


def analyze_basket(
    basket: Basket,
    series_by_instrument: Mapping[str, PriceSeries],
    config: RollingConfig,
) -> RollingSummary:
    """Rolling statistics for the weighted basket and for each instrument."""

    summary = RollingSummary(
        status="insufficient",
        window_days=config.window_days,
        return_model=config.return_model,
        risk_level=basket.risk_level,
    )

    names = {p.instrument_id: p.display_name for p in basket.positions}
    for instrument_id in basket.instrument_ids:
        series = series_by_instrument.get(instrument_id) or PriceSeries.empty(instrument_id)
        summary.instruments.append(instrument_rolling_stats(series, config, display_name=names.get(instrument_id)))

    present = {
        instrument_id: series_by_instrument[instrument_id]
        for instrument_id in basket.instrument_ids
        if instrument_id in series_by_instrument and series_by_instrument[instrument_id]
    }
    frame = common_calendar(present)
    if frame.empty:
        logger.info("Basket %s has no common calendar; rolling stats insufficient", basket.id)
        return summary

    summary.window_start = frame.index[0].date()
    windows = rolling_window_returns(frame, basket.weights, config)
    summary.sample_count = len(windows)
    if windows.end_dates:
        summary.window_end = windows.end_dates[-1]
    try:
        summary.basket = summarise_returns(windows.returns, min_samples=config.min_samples)
    except InsufficientWindowCoverage as exc:
        logger.info("Basket %s rolling stats insufficient: %s", basket.id, exc)
        return summary
    summary.status = "ok"
    return summary


__all__ = [
    "InstrumentRollingStats",
    "RollingConfig",
    "RollingStats",
    "RollingSummary",
    "RollingWindowSeries",
    "analyze_basket",
    "common_calendar",
    "instrument_rolling_stats",
    "match_window_ends",
    "rolling_window_returns",
    "summarise_returns",
]
