"""Daily recalculation of every active basket.

Baskets are recomputed one at a time with a pause in between so the shared
NAV provider is never hit in parallel. A failing basket is logged, counted
and skipped; it never aborts the rest of the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from basket_performance.config import AppSettings
from basket_performance.core.clock import Clock, SystemClock
from basket_performance.core.errors import EngineError
from basket_performance.core.telemetry import recompute_counter, tracer
from basket_performance.services.snapshots import SnapshotService

logger = logging.getLogger(__name__)


@dataclass
class BasketFailure:
    basket_id: str
    basket_name: str
    error: str


@dataclass
class RunSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[BasketFailure] = field(default_factory=list)
    started_at: datetime | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat() if self.started_at else None
        return payload


class RecalculationScheduler:
    def __init__(
        self,
        service: SnapshotService,
        *,
        settings: AppSettings,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.settings = settings
        self.clock = clock or SystemClock(settings.timezone)
        self._sleep = sleep
        self._run_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self.last_summary: RunSummary | None = None

    async def run_all(self) -> RunSummary:
        """Recompute every active basket sequentially and report the outcome."""

        async with self._run_lock:
            started = time.perf_counter()
            summary = RunSummary(started_at=self.clock.now())
            baskets = await self.service.baskets.list_active()
            summary.total = len(baskets)
            delay = self.settings.inter_basket_delay_seconds

            with tracer.start_as_current_span("basket.recalculate_all") as span:
                span.set_attribute("basket.count", summary.total)
                for index, basket in enumerate(baskets):
                    try:
                        await self.service.recompute(basket.id)
                    except Exception as exc:
                        summary.failed += 1
                        summary.errors.append(BasketFailure(basket.id, basket.name, str(exc) or type(exc).__name__))
                        recompute_counter.add(1, {"outcome": "failure"})
                        logger.error(
                            "Failed to recalculate basket %s (%s): %s",
                            basket.name,
                            basket.id,
                            exc,
                            exc_info=not isinstance(exc, EngineError),
                        )
                    else:
                        summary.successful += 1
                        recompute_counter.add(1, {"outcome": "success"})
                        logger.info("Recalculated live returns for basket %s", basket.name)
                    if delay > 0 and index < len(baskets) - 1:
                        await self._sleep(delay)

            summary.duration_seconds = time.perf_counter() - started
            self.last_summary = summary
            return summary

    async def run_daily(self) -> dict[str, Any]:
        """Job wrapper around :meth:`run_all` that never raises."""

        started = time.perf_counter()
        logger.info("[Daily Recalculation] Starting daily recalculation job")
        try:
            summary = await self.run_all()
        except Exception as exc:
            duration = time.perf_counter() - started
            logger.exception("[Daily Recalculation] Job failed after %.2fs", duration)
            return {"success": False, "duration_seconds": duration, "error": str(exc)}

        logger.info(
            "[Daily Recalculation] Completed in %.2fs: %d/%d successful, %d failed",
            summary.duration_seconds,
            summary.successful,
            summary.total,
            summary.failed,
        )
        if summary.errors:
            logger.warning("[Daily Recalculation] Errors: %s", [asdict(error) for error in summary.errors])
        return {"success": True, "duration_seconds": summary.duration_seconds, "results": summary.to_dict()}

    def seconds_until_next_run(self, now: datetime | None = None) -> float:
        now = now or self.clock.now()
        target = now.replace(
            hour=self.settings.scheduler_hour,
            minute=self.settings.scheduler_minute,
            second=0,
            microsecond=0,
        )
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    async def _loop(self) -> None:
        await self._sleep(self.settings.startup_delay_seconds)
        logger.info("[Scheduler] Running initial basket recalculation on startup")
        await self.run_daily()
        while True:
            wait = self.seconds_until_next_run()
            logger.info("[Scheduler] Next basket recalculation in %.0fs", wait)
            await self._sleep(wait)
            await self.run_daily()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="basket-recalculation")
        logger.info(
            "[Scheduler] Basket recalculation scheduled daily at %02d:%02d %s",
            self.settings.scheduler_hour,
            self.settings.scheduler_minute,
            self.settings.timezone,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


__all__ = ["BasketFailure", "RecalculationScheduler", "RunSummary"]
