"""Rolling window analyzer tests."""

from __future__ import annotations

from datetime import date

import numpy as np
import pytest

from basket_performance.core.errors import InsufficientWindowCoverage
from basket_performance.services.baskets import Basket, Position
from basket_performance.services.rolling import (
    RollingConfig,
    analyze_basket,
    common_calendar,
    instrument_rolling_stats,
    match_window_ends,
    rolling_window_returns,
    summarise_returns,
)
from basket_performance.services.timeseries import PriceSeries

START = date(2020, 1, 1)
END = date(2022, 12, 31)


def _series(instrument_id: str, prices: dict[date, float]) -> PriceSeries:
    ordered = sorted(prices.items())
    return PriceSeries(instrument_id, [d for d, _ in ordered], [p for _, p in ordered])


def _basket(*weights: tuple[str, float]) -> Basket:
    return Basket(
        id="growth",
        name="Growth",
        positions=[Position(instrument_id, instrument_id, weight) for instrument_id, weight in weights],
    )


def test_match_window_ends_respects_tolerance():
    days = np.array([0, 10, 372], dtype=np.int64)
    too_far = np.array([0, 10, 373], dtype=np.int64)

    assert match_window_ends(days, 365, 7).tolist()[0] == 2
    assert match_window_ends(too_far, 365, 7).tolist()[0] == -1


def test_match_window_ends_prefers_earlier_date_on_tie():
    days = np.array([0, 360, 370], dtype=np.int64)

    ends = match_window_ends(days, 365, 7).tolist()

    assert ends == [1, -1, -1]


def test_common_calendar_keeps_shared_dates_only():
    a = PriceSeries("A", [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)], [1.0, 2.0, 3.0])
    b = PriceSeries("B", [date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4)], [4.0, 5.0, 6.0])

    frame = common_calendar({"A": a, "B": b, "C": PriceSeries.empty("C")})

    assert list(frame.columns) == ["A", "B"]
    assert [ts.date() for ts in frame.index] == [date(2024, 1, 2), date(2024, 1, 3)]


def test_constant_growth_basket_has_flat_distribution(make_prices):
    a = _series("A", make_prices(START, END, 0.10))
    b = _series("B", make_prices(START, END, 0.10, base=50.0))
    config = RollingConfig(window_days=365)

    summary = analyze_basket(_basket(("A", 60.0), ("B", 40.0)), {"A": a, "B": b}, config)

    assert summary.status == "ok"
    stats = summary.basket
    assert stats is not None
    # windows ending in the last week match a slightly shorter span
    assert stats.median == pytest.approx(10.0, abs=1e-6)
    assert stats.max == pytest.approx(10.0, abs=1e-6)
    assert stats.mean == pytest.approx(10.0, abs=0.01)
    assert 9.7 < stats.min <= 10.0
    assert stats.std_dev < 0.1
    assert stats.positive_percentage == 100.0
    assert stats.sample_count == summary.sample_count
    assert summary.window_start == START
    assert summary.window_end == END
    assert [item.status for item in summary.instruments] == ["ok", "ok"]


def test_rebalanced_model_matches_buy_and_hold_for_identical_growth(make_prices):
    a = _series("A", make_prices(START, END, 0.10))
    b = _series("B", make_prices(START, END, 0.10, base=20.0))
    config = RollingConfig(window_days=365, return_model="rebalanced")

    summary = analyze_basket(_basket(("A", 50.0), ("B", 50.0)), {"A": a, "B": b}, config)

    assert summary.status == "ok"
    assert summary.basket is not None
    assert summary.basket.mean == pytest.approx(10.0, abs=0.01)


def test_weighted_basket_sits_between_its_instruments(make_prices):
    slow = _series("SLOW", make_prices(START, END, 0.05))
    fast = _series("FAST", make_prices(START, END, 0.20))

    summary = analyze_basket(
        _basket(("SLOW", 50.0), ("FAST", 50.0)), {"SLOW": slow, "FAST": fast}, RollingConfig(window_days=365)
    )

    assert summary.basket is not None
    assert 5.0 < summary.basket.min <= summary.basket.max < 20.0


def test_single_window_is_insufficient():
    series = PriceSeries("A", [date(2020, 1, 1), date(2021, 1, 1)], [100.0, 110.0])

    result = instrument_rolling_stats(series, RollingConfig(window_days=366))

    assert result.status == "insufficient"
    assert result.stats is None
    assert result.to_dict()["mean"] is None


def test_short_history_yields_insufficient_summary(make_prices):
    a = _series("A", make_prices(date(2024, 1, 1), date(2024, 6, 1), 0.10))

    summary = analyze_basket(_basket(("A", 100.0)), {"A": a}, RollingConfig(window_days=365))

    assert summary.status == "insufficient"
    assert summary.basket is None
    assert summary.sample_count == 0
    assert summary.to_dict()["basket"]["median"] is None


def test_missing_instrument_blocks_basket_below_coverage(make_prices):
    a = _series("A", make_prices(START, END, 0.10))
    series = {"A": a, "B": PriceSeries.empty("B")}
    basket = _basket(("A", 50.0), ("B", 50.0))

    strict = analyze_basket(basket, series, RollingConfig(window_days=365))
    relaxed = analyze_basket(basket, series, RollingConfig(window_days=365, min_weight_coverage=0.5))

    assert strict.status == "insufficient"
    assert [item.status for item in strict.instruments] == ["ok", "insufficient"]
    assert relaxed.status == "ok"
    assert relaxed.basket is not None
    assert relaxed.basket.mean == pytest.approx(10.0, abs=0.01)


def test_rolling_window_returns_on_empty_frame():
    frame = common_calendar({})

    assert len(rolling_window_returns(frame, {}, RollingConfig())) == 0


def test_summarise_returns_statistics():
    stats = summarise_returns([-2.0, 4.0, 10.0, 12.0])

    assert stats.mean == pytest.approx(6.0)
    assert stats.median == pytest.approx(7.0)
    assert stats.min == -2.0
    assert stats.max == 12.0
    assert stats.std_dev == pytest.approx(np.std([-2.0, 4.0, 10.0, 12.0]))
    assert stats.positive_percentage == pytest.approx(75.0)


def test_summarise_returns_requires_two_samples():
    with pytest.raises(InsufficientWindowCoverage):
        summarise_returns([5.0])
