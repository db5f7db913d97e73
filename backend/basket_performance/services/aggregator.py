"""Basket-level metric aggregation.

Per-instrument metrics (CAGR, lumpsum growth, SIP simulation) are computed
from each instrument's own series and then combined with the configured
weights. Basket SIP XIRR is solved once over the merged cashflow ledger so
it reflects the true combined timing of the instalments.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Mapping

from basket_performance.config import AppSettings
from basket_performance.services.baskets import Basket, Position
from basket_performance.services.returns import (
    CashFlow,
    PeriodicInvestmentResult,
    compound_growth_rate,
    merge_ledgers,
    simulate_periodic_investment,
    weighted_average,
    xirr,
)
from basket_performance.services.timeseries import (
    PricePoint,
    PriceSeries,
    resolve_nearest_on_or_after,
    shift_years,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationConfig:
    lumpsum_amount: float = 100_000.0
    sip_monthly_amount: float = 1_000.0
    sip_months: int = 36
    tolerance_days: int = 7
    lookback_years: int = 3
    long_lookback_years: int = 5

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "AggregationConfig":
        return cls(
            lumpsum_amount=settings.lumpsum_amount,
            sip_monthly_amount=settings.sip_monthly_amount,
            sip_months=settings.sip_months,
            tolerance_days=settings.match_tolerance_days,
        )


@dataclass
class InstrumentMetrics:
    instrument_id: str
    display_name: str
    weight_percent: float
    data_available: bool = False
    current_price: float | None = None
    current_price_date: date | None = None
    cagr_3y: float | None = None
    cagr_5y: float | None = None
    lumpsum_invested: float = 0.0
    lumpsum_value: float | None = None
    lumpsum_return: float | None = None
    lumpsum_return_percent: float | None = None
    sip_invested: float = 0.0
    sip_value: float | None = None
    sip_xirr: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["current_price_date"] = self.current_price_date.isoformat() if self.current_price_date else None
        return payload


@dataclass
class BasketMetrics:
    cagr_3y: float | None = None
    cagr_5y: float | None = None
    lumpsum_invested: float = 0.0
    lumpsum_value: float | None = None
    lumpsum_return: float | None = None
    lumpsum_return_percent: float | None = None
    sip_invested: float = 0.0
    sip_value: float | None = None
    sip_xirr: float | None = None
    sip_profit_percent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BasketComputation:
    """Aggregator output: the snapshot payload plus the series used to build it.

    ``series_by_instrument`` is handed to the rolling analyzer in the same
    pass and is never persisted.
    """

    basket_id: str
    as_of: date
    basket_metrics: BasketMetrics
    instrument_metrics: list[InstrumentMetrics]
    series_by_instrument: dict[str, PriceSeries] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {
            "basket_metrics": self.basket_metrics.to_dict(),
            "instrument_metrics": [item.to_dict() for item in self.instrument_metrics],
        }


def _growth_since(series: PriceSeries, anchor: date, latest: PricePoint, tolerance_days: int) -> float | None:
    start = resolve_nearest_on_or_after(series, anchor, tolerance_days)
    if start is None or start.date >= latest.date:
        return None
    return compound_growth_rate(start.price, latest.price, (latest.date - start.date).days)


def _instrument_metrics(
    position: Position,
    series: PriceSeries,
    as_of: date,
    config: AggregationConfig,
) -> tuple[InstrumentMetrics, PeriodicInvestmentResult | None]:
    metrics = InstrumentMetrics(
        instrument_id=position.instrument_id,
        display_name=position.display_name,
        weight_percent=position.weight_percent,
    )
    series = series.between(None, as_of)
    latest = series.latest()
    if latest is None:
        return metrics, None

    metrics.data_available = True
    metrics.current_price = latest.price
    metrics.current_price_date = latest.date

    short_anchor = shift_years(as_of, -config.lookback_years)
    long_anchor = shift_years(as_of, -config.long_lookback_years)
    metrics.cagr_3y = _growth_since(series, short_anchor, latest, config.tolerance_days)
    metrics.cagr_5y = _growth_since(series, long_anchor, latest, config.tolerance_days)

    lumpsum_share = config.lumpsum_amount * position.weight_fraction
    entry = resolve_nearest_on_or_after(series, short_anchor, config.tolerance_days)
    if entry is not None and lumpsum_share > 0:
        units = lumpsum_share / entry.price
        metrics.lumpsum_invested = lumpsum_share
        metrics.lumpsum_value = units * latest.price
        metrics.lumpsum_return = metrics.lumpsum_value - lumpsum_share
        metrics.lumpsum_return_percent = metrics.lumpsum_return / lumpsum_share * 100.0

    sip_start = short_anchor.replace(day=1)
    sip = simulate_periodic_investment(
        series,
        sip_start,
        config.sip_monthly_amount,
        position.weight_fraction,
        periods=config.sip_months,
        tolerance_days=config.tolerance_days,
    )
    if sip.current_value is None:
        return metrics, None
    metrics.sip_invested = sip.invested
    metrics.sip_value = sip.current_value
    metrics.sip_xirr = sip.xirr
    return metrics, sip


def compute_basket_performance(
    basket: Basket,
    series_by_instrument: Mapping[str, PriceSeries],
    as_of: date,
    config: AggregationConfig,
) -> BasketComputation:
    """Compute every snapshot metric for ``basket`` as of ``as_of``."""

    instrument_metrics: list[InstrumentMetrics] = []
    simulations: list[PeriodicInvestmentResult] = []
    cagr_3y: dict[str, float | None] = {}
    cagr_5y: dict[str, float | None] = {}
    totals = BasketMetrics()
    lumpsum_value = 0.0

    for position in basket.positions:
        series = series_by_instrument.get(position.instrument_id) or PriceSeries.empty(position.instrument_id)
        metrics, sip = _instrument_metrics(position, series, as_of, config)
        instrument_metrics.append(metrics)
        if not metrics.data_available:
            logger.warning("Basket %s: no price data for %s", basket.id, position.instrument_id)

        cagr_3y[position.instrument_id] = metrics.cagr_3y
        cagr_5y[position.instrument_id] = metrics.cagr_5y
        if metrics.lumpsum_value is not None:
            totals.lumpsum_invested += metrics.lumpsum_invested
            lumpsum_value += metrics.lumpsum_value
        if sip is not None:
            simulations.append(sip)

    weights = basket.weights
    totals.cagr_3y = weighted_average(cagr_3y, weights)
    totals.cagr_5y = weighted_average(cagr_5y, weights)

    if totals.lumpsum_invested > 0:
        totals.lumpsum_value = lumpsum_value
        totals.lumpsum_return = lumpsum_value - totals.lumpsum_invested
        totals.lumpsum_return_percent = totals.lumpsum_return / totals.lumpsum_invested * 100.0

    if simulations:
        sip_value = sum(sim.current_value or 0.0 for sim in simulations)
        totals.sip_invested = sum(sim.invested for sim in simulations)
        ledger = merge_ledgers(sim.purchases for sim in simulations)
        ledger.append(CashFlow(as_of, sip_value))
        totals.sip_value = sip_value
        totals.sip_xirr = xirr(ledger)
        if totals.sip_invested > 0:
            totals.sip_profit_percent = (sip_value - totals.sip_invested) / totals.sip_invested * 100.0

    return BasketComputation(
        basket_id=basket.id,
        as_of=as_of,
        basket_metrics=totals,
        instrument_metrics=instrument_metrics,
        series_by_instrument={key: series.between(None, as_of) for key, series in series_by_instrument.items()},
    )


__all__ = [
    "AggregationConfig",
    "BasketComputation",
    "BasketMetrics",
    "InstrumentMetrics",
    "compute_basket_performance",
]
