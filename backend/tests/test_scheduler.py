"""Daily recalculation scheduler tests."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from basket_performance.providers.nav import InMemoryPriceProvider
from basket_performance.services.baskets import Basket, Position
from basket_performance.services.scheduler import RecalculationScheduler
from basket_performance.services.snapshots import SnapshotService
from basket_performance.services.stores import InMemoryBasketStore, InMemorySnapshotStore

HISTORY_START = date(2019, 1, 1)


def _basket(basket_id: str, *instrument_ids: str, is_active: bool = True) -> Basket:
    weight = 100.0 / len(instrument_ids)
    return Basket(
        id=basket_id,
        name=f"Basket {basket_id}",
        positions=[Position(instrument_id, instrument_id, weight) for instrument_id in instrument_ids],
        is_active=is_active,
    )


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _scheduler(settings, clock, make_prices, as_of, baskets, *, failures=None, sleep=None):
    provider = InMemoryPriceProvider(
        {
            "A": make_prices(HISTORY_START, as_of, 0.10),
            "B": make_prices(HISTORY_START, as_of, 0.12, base=25.0),
        },
        failures=failures,
    )
    store = InMemoryBasketStore(baskets)
    service = SnapshotService(store, InMemorySnapshotStore(), provider, settings=settings, clock=clock)
    return RecalculationScheduler(service, settings=settings, clock=clock, sleep=sleep or SleepRecorder())


async def test_run_all_isolates_failing_basket(settings, clock, make_prices, as_of):
    baskets = [
        _basket("alpha", "A", "B"),
        _basket("broken", "DOWN"),
        _basket("gamma", "B"),
    ]
    scheduler = _scheduler(
        settings, clock, make_prices, as_of, baskets, failures={"DOWN": RuntimeError("upstream exploded")}
    )

    summary = await scheduler.run_all()

    assert summary.total == 3
    assert summary.successful == 2
    assert summary.failed == 1
    assert [failure.basket_id for failure in summary.errors] == ["broken"]
    assert summary.errors[0].basket_name == "Basket broken"
    assert scheduler.last_summary is summary
    assert await scheduler.service.snapshots.latest("gamma") is not None
    assert await scheduler.service.snapshots.latest("broken") is None


async def test_run_all_pauses_between_baskets_only(settings, clock, make_prices, as_of):
    sleep = SleepRecorder()
    baskets = [_basket("one", "A"), _basket("two", "B"), _basket("three", "A", "B")]
    tuned = settings.model_copy(update={"inter_basket_delay_seconds": 1.5})
    scheduler = _scheduler(tuned, clock, make_prices, as_of, baskets, sleep=sleep)

    await scheduler.run_all()

    assert sleep.calls == [1.5, 1.5]


async def test_inactive_baskets_are_skipped(settings, clock, make_prices, as_of):
    baskets = [_basket("live", "A"), _basket("retired", "B", is_active=False)]
    scheduler = _scheduler(settings, clock, make_prices, as_of, baskets)

    summary = await scheduler.run_all()

    assert summary.total == 1
    assert summary.successful == 1


async def test_run_daily_reports_results(settings, clock, make_prices, as_of):
    scheduler = _scheduler(settings, clock, make_prices, as_of, [_basket("alpha", "A")])

    result = await scheduler.run_daily()

    assert result["success"] is True
    assert result["results"]["total"] == 1
    assert result["results"]["failed"] == 0


async def test_run_daily_never_raises(settings, clock, make_prices, as_of):
    scheduler = _scheduler(settings, clock, make_prices, as_of, [_basket("alpha", "A")])

    async def _boom():
        raise RuntimeError("store offline")

    scheduler.service.baskets.list_active = _boom

    result = await scheduler.run_daily()

    assert result["success"] is False
    assert "store offline" in result["error"]


@pytest.mark.parametrize(
    "hour, expected",
    [(1, timedelta(hours=1)), (2, timedelta(days=1)), (3, timedelta(hours=23))],
)
def test_seconds_until_next_run(settings, clock, hour, expected):
    scheduler = _scheduler(settings, clock, lambda *a, **k: {}, date(2024, 1, 1), [])
    now = datetime(2024, 6, 28, hour, 0, tzinfo=timezone.utc)

    assert scheduler.seconds_until_next_run(now) == expected.total_seconds()


async def test_start_and_stop_background_loop(settings, clock, make_prices, as_of):
    gate = asyncio.Event()

    async def _blocked_sleep(seconds: float) -> None:
        await gate.wait()

    scheduler = _scheduler(settings, clock, make_prices, as_of, [], sleep=_blocked_sleep)

    scheduler.start()
    await asyncio.sleep(0)
    assert scheduler.running is True

    await scheduler.stop()
    assert scheduler.running is False
