"""Price series normalisation and nearest-date lookups.

Every calculator works off a :class:`PriceSeries`, an immutable, ascending,
de-duplicated view over one instrument's price history. Lookups are answered
with a binary search over the date index because the rolling analyzer and
the SIP simulator resolve many target dates against the same series.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Iterator, Sequence

import pandas as pd


@dataclass(frozen=True)
class PricePoint:
    instrument_id: str
    date: date
    price: float


class PriceSeries:
    """Sorted price history for a single instrument."""

    __slots__ = ("instrument_id", "_dates", "_prices")

    def __init__(self, instrument_id: str, dates: Sequence[date], prices: Sequence[float]) -> None:
        if len(dates) != len(prices):
            raise ValueError("dates and prices must have the same length")
        self.instrument_id = instrument_id
        self._dates: tuple[date, ...] = tuple(dates)
        self._prices: tuple[float, ...] = tuple(float(p) for p in prices)

    @classmethod
    def from_points(cls, instrument_id: str, points: Iterable[PricePoint]) -> "PriceSeries":
        """Sort ascending, drop non-positive prices; the last duplicate date wins."""

        by_date: dict[date, float] = {}
        for point in points:
            if point.price is None or not point.price > 0:
                continue
            by_date[point.date] = float(point.price)
        ordered = sorted(by_date.items())
        return cls(instrument_id, [d for d, _ in ordered], [p for _, p in ordered])

    @classmethod
    def empty(cls, instrument_id: str) -> "PriceSeries":
        return cls(instrument_id, (), ())

    def __len__(self) -> int:
        return len(self._dates)

    def __bool__(self) -> bool:
        return bool(self._dates)

    def __iter__(self) -> Iterator[PricePoint]:
        for day, price in zip(self._dates, self._prices):
            yield PricePoint(self.instrument_id, day, price)

    def __repr__(self) -> str:
        if not self:
            return f"PriceSeries({self.instrument_id!r}, empty)"
        return f"PriceSeries({self.instrument_id!r}, {self._dates[0]}..{self._dates[-1]}, n={len(self)})"

    @property
    def dates(self) -> tuple[date, ...]:
        return self._dates

    @property
    def prices(self) -> tuple[float, ...]:
        return self._prices

    def first(self) -> PricePoint | None:
        if not self:
            return None
        return PricePoint(self.instrument_id, self._dates[0], self._prices[0])

    def latest(self) -> PricePoint | None:
        if not self:
            return None
        return PricePoint(self.instrument_id, self._dates[-1], self._prices[-1])

    def price_on(self, day: date) -> float | None:
        idx = bisect_left(self._dates, day)
        if idx < len(self._dates) and self._dates[idx] == day:
            return self._prices[idx]
        return None

    def between(self, start: date | None = None, end: date | None = None) -> "PriceSeries":
        lo = 0 if start is None else bisect_left(self._dates, start)
        hi = len(self._dates) if end is None else bisect_right(self._dates, end)
        return PriceSeries(self.instrument_id, self._dates[lo:hi], self._prices[lo:hi])

    def to_pandas(self) -> pd.Series:
        index = pd.DatetimeIndex(pd.to_datetime(list(self._dates)), name="date")
        return pd.Series(self._prices, index=index, name=self.instrument_id, dtype="float64")


def resolve_nearest_on_or_after(
    series: PriceSeries,
    target: date,
    tolerance_days: int,
) -> PricePoint | None:
    """Return the first point dated ``>= target`` and at most ``tolerance_days`` later.

    ``None`` means unmatched; callers exclude the date rather than failing.
    """

    dates = series.dates
    idx = bisect_left(dates, target)
    if idx >= len(dates):
        return None
    if dates[idx] - target > timedelta(days=tolerance_days):
        return None
    return PricePoint(series.instrument_id, dates[idx], series.prices[idx])


def shift_months(day: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the end of short months."""

    return (pd.Timestamp(day) + pd.DateOffset(months=months)).date()


def shift_years(day: date, years: int) -> date:
    return (pd.Timestamp(day) + pd.DateOffset(years=years)).date()


__all__ = [
    "PricePoint",
    "PriceSeries",
    "resolve_nearest_on_or_after",
    "shift_months",
    "shift_years",
]
