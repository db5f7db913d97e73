import asyncio
import inspect
import pathlib
import sys
from datetime import date, datetime, timedelta, timezone
from typing import Callable

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from basket_performance.config import AppSettings  # noqa: E402
from basket_performance.core.clock import ManualClock  # noqa: E402

AS_OF = date(2024, 6, 28)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


def growth_prices(
    start: date,
    end: date,
    annual_rate: float,
    *,
    base: float = 100.0,
    step_days: int = 1,
) -> dict[date, float]:
    """Prices compounding at ``annual_rate`` per 365.25-day year."""

    prices: dict[date, float] = {}
    day = start
    while day <= end:
        elapsed = (day - start).days
        prices[day] = base * (1.0 + annual_rate) ** (elapsed / 365.25)
        day += timedelta(days=step_days)
    return prices


@pytest.fixture
def make_prices() -> Callable[..., dict[date, float]]:
    return growth_prices


@pytest.fixture
def as_of() -> date:
    return AS_OF


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        scheduler_enabled=False,
        inter_basket_delay_seconds=0.0,
        price_cache_ttl_minutes=0,
        rolling_window_days=365,
        admin_token="test-admin-token",
        cron_secret="test-cron-secret",
        telemetry_enabled=False,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(AS_OF.year, AS_OF.month, AS_OF.day, 10, 0, tzinfo=timezone.utc))
