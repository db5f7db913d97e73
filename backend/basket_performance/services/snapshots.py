"""Once-per-day snapshot cache for basket performance.

``get_or_compute`` serves today's snapshot when one exists and otherwise runs
the full pipeline synchronously. ``recompute`` always recomputes and also
refreshes the basket's long-lived rolling summary. Writes are a single
idempotent replace keyed by ``(basket_id, calculation_date)``, so a reader
racing a recompute sees either the previous or the new snapshot, never a
partial one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date

from basket_performance.config import AppSettings
from basket_performance.core.clock import Clock, SystemClock
from basket_performance.core.errors import BasketNotFound, ComputeTimeout, DataUnavailable
from basket_performance.core.telemetry import tracer
from basket_performance.providers.nav import PriceDataProvider
from basket_performance.services.aggregator import AggregationConfig, BasketComputation, compute_basket_performance
from basket_performance.services.baskets import Basket
from basket_performance.services.rolling import RollingConfig, RollingSummary, analyze_basket
from basket_performance.services.stores import BasketStore, PerformanceSnapshot, SnapshotStore
from basket_performance.services.timeseries import PriceSeries

logger = logging.getLogger(__name__)


@dataclass
class ComputedPerformance:
    snapshot: PerformanceSnapshot
    rolling: RollingSummary


class SnapshotService:
    """Coordinates price fetching, computation and the snapshot store."""

    def __init__(
        self,
        baskets: BasketStore,
        snapshots: SnapshotStore,
        provider: PriceDataProvider,
        *,
        settings: AppSettings,
        clock: Clock | None = None,
    ) -> None:
        self.baskets = baskets
        self.snapshots = snapshots
        self.provider = provider
        self.settings = settings
        self.clock = clock or SystemClock(settings.timezone)
        self.aggregation_config = AggregationConfig.from_settings(settings)
        self.rolling_config = RollingConfig.from_settings(settings)
        self.computations = 0

    def today(self) -> date:
        return self.clock.today()

    async def _load_basket(self, basket_id: str) -> Basket:
        basket = await self.baskets.get(basket_id)
        if basket is None:
            raise BasketNotFound(basket_id)
        return basket

    async def _fetch_series(self, instrument_id: str) -> PriceSeries:
        timeout = self.settings.fetch_timeout_seconds
        try:
            try:
                points = await asyncio.wait_for(self.provider.get_historical_series(instrument_id), timeout)
            except asyncio.TimeoutError as exc:
                raise ComputeTimeout(instrument_id, timeout) from exc
        except DataUnavailable as exc:
            logger.warning("%s", exc)
            return PriceSeries.empty(instrument_id)
        except Exception as exc:
            logger.warning("Price fetch for %s failed: %s", instrument_id, exc)
            return PriceSeries.empty(instrument_id)
        series = PriceSeries.from_points(instrument_id, points)
        if not series:
            logger.warning("%s", DataUnavailable(instrument_id, "empty series"))
        return series

    async def fetch_prices(self, basket: Basket) -> dict[str, PriceSeries]:
        """Fetch every instrument sequentially; failures degrade to empty series."""

        series: dict[str, PriceSeries] = {}
        for instrument_id in basket.instrument_ids:
            series[instrument_id] = await self._fetch_series(instrument_id)
        return series

    def _build_snapshot(self, computation: BasketComputation, rolling: RollingSummary) -> PerformanceSnapshot:
        payload = computation.payload()
        return PerformanceSnapshot(
            basket_id=computation.basket_id,
            calculation_date=computation.as_of,
            calculated_at=self.clock.now(),
            basket_metrics=payload["basket_metrics"],
            instrument_metrics=payload["instrument_metrics"],
            rolling_stats=rolling.basket.to_dict() if rolling.basket else None,
            rolling_status=rolling.status,
            window_start=rolling.window_start,
            window_end=rolling.window_end,
            sample_count=rolling.sample_count,
        )

    async def compute(self, basket: Basket, as_of: date | None = None) -> ComputedPerformance:
        """Run the aggregator and rolling analyzer for ``basket`` without persisting."""

        as_of = as_of or self.today()
        with tracer.start_as_current_span("basket.compute") as span:
            span.set_attribute("basket.id", basket.id)
            series = await self.fetch_prices(basket)
            if not any(series.values()):
                # no priced instrument: fail this basket and leave stored snapshots untouched
                raise DataUnavailable(basket.id, "no instrument in the basket has price data")
            self.computations += 1
            computation = compute_basket_performance(basket, series, as_of, self.aggregation_config)
            rolling = analyze_basket(basket, computation.series_by_instrument, self.rolling_config)
            span.set_attribute("basket.rolling.samples", rolling.sample_count)
        return ComputedPerformance(self._build_snapshot(computation, rolling), rolling)

    async def get_or_compute(self, basket_id: str) -> PerformanceSnapshot:
        """Today's snapshot, computing and storing it on a miss."""

        today = self.today()
        cached = await self.snapshots.find(basket_id, today)
        if cached is not None:
            return cached
        basket = await self._load_basket(basket_id)
        logger.info("No snapshot for basket %s on %s; computing", basket_id, today)
        result = await self.compute(basket, today)
        return await self.snapshots.upsert(basket_id, today, result.snapshot)

    async def recompute(self, basket_id: str) -> PerformanceSnapshot:
        """Unconditionally recompute, replace today's snapshot and the rolling summary."""

        basket = await self._load_basket(basket_id)
        today = self.today()
        result = await self.compute(basket, today)
        saved = await self.snapshots.upsert(basket_id, today, result.snapshot)
        await self.baskets.save_rolling_summary(basket_id, result.rolling.to_dict(), self.clock.now())
        if result.rolling.status == "ok":
            logger.info("Updated rolling returns stats for basket %s", basket.name)
        else:
            logger.info("Rolling returns for basket %s are insufficient", basket.name)
        return saved

    async def get_latest(self, basket_id: str) -> PerformanceSnapshot | None:
        """Newest stored snapshot of any date, or ``None`` when never computed."""

        return await self.snapshots.latest(basket_id)

    async def history(self, basket_id: str, limit: int = 30) -> list[PerformanceSnapshot]:
        await self._load_basket(basket_id)
        return await self.snapshots.history(basket_id, limit)

    async def rolling_summary(self, basket_id: str) -> dict | None:
        basket = await self._load_basket(basket_id)
        return basket.latest_rolling_summary


__all__ = ["ComputedPerformance", "SnapshotService"]
