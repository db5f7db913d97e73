"""Performance API tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date

from httpx import ASGITransport, AsyncClient

from basket_performance.main import create_app
from basket_performance.providers.nav import InMemoryPriceProvider
from basket_performance.services.baskets import Basket, Position
from basket_performance.services.stores import InMemoryBasketStore, InMemorySnapshotStore

HISTORY_START = date(2019, 1, 1)


def _baskets() -> InMemoryBasketStore:
    return InMemoryBasketStore(
        [
            Basket(
                id="core",
                name="Core Equity",
                positions=[Position("A", "Fund A", 60.0), Position("B", "Fund B", 40.0)],
                risk_level="moderate",
            ),
            Basket(id="dark", name="Dark Basket", positions=[Position("OFFLINE", "Offline Fund", 100.0)]),
        ]
    )


def _client(settings, clock, make_prices, as_of):
    provider = InMemoryPriceProvider(
        {
            "A": make_prices(HISTORY_START, as_of, 0.10),
            "B": make_prices(HISTORY_START, as_of, 0.14, base=45.0),
        }
    )
    app = create_app(
        settings,
        baskets=_baskets(),
        snapshots=InMemorySnapshotStore(),
        provider=provider,
        clock=clock,
    )

    @asynccontextmanager
    async def _manager():
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield client

    return _manager


ADMIN = {"Authorization": "Bearer test-admin-token"}


async def test_performance_is_computed_on_first_read(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        response = await client.get("/baskets/core/performance")

    assert response.status_code == 200
    payload = response.json()
    assert payload["basket_id"] == "core"
    assert payload["calculation_date"] == as_of.isoformat()
    assert 10.0 < payload["basket_metrics"]["cagr_3y"] < 14.0
    assert [item["instrument_id"] for item in payload["instrument_metrics"]] == ["A", "B"]
    assert payload["rolling_status"] == "ok"


async def test_performance_without_compute_needs_snapshot(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        missing = await client.get("/baskets/core/performance", params={"compute": "false"})
        await client.get("/baskets/core/performance")
        present = await client.get("/baskets/core/performance", params={"compute": "false"})

    assert missing.status_code == 404
    assert missing.json()["detail"] == "Performance not yet computed"
    assert present.status_code == 200


async def test_unknown_basket_returns_404(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        response = await client.get("/baskets/nope/performance")

    assert response.status_code == 404


async def test_basket_without_any_data_returns_503(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        response = await client.get("/baskets/dark/performance")

    assert response.status_code == 503


async def test_recalculate_requires_admin(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        anonymous = await client.post("/baskets/core/recalculate")
        wrong = await client.post("/baskets/core/recalculate", headers={"Authorization": "Bearer nope"})

    assert anonymous.status_code == 401
    assert wrong.status_code == 401


async def test_recalculate_refreshes_rolling_summary(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        before = await client.get("/baskets/core/rolling-summary")
        recalculated = await client.post("/baskets/core/recalculate", headers=ADMIN)
        after = await client.get("/baskets/core/rolling-summary")

    assert before.status_code == 404
    assert recalculated.status_code == 200
    assert after.status_code == 200
    summary = after.json()
    assert summary["status"] == "ok"
    assert summary["window_days"] == 365
    assert summary["risk_level"] == "moderate"
    assert {item["instrument_id"] for item in summary["instruments"]} == {"A", "B"}


async def test_recalculate_all_with_cron_secret(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        response = await client.post("/baskets/recalculate-all", headers={"X-Cron-Secret": "test-cron-secret"})
        health = await client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["total"] == 2
    assert payload["data"]["failed"] == 1
    assert payload["data"]["errors"][0]["basket_id"] == "dark"
    assert health.json()["last_run"]["successful"] == 1
    assert health.json()["scheduler_running"] is False


async def test_history_is_newest_first(settings, clock, make_prices, as_of):
    async with _client(settings, clock, make_prices, as_of)() as client:
        await client.get("/baskets/core/performance")
        clock.advance(days=1)
        await client.get("/baskets/core/performance")
        response = await client.get("/baskets/core/performance/history", params={"limit": 5})

    dates = [item["calculation_date"] for item in response.json()]
    assert dates == sorted(dates, reverse=True)
    assert len(dates) == 2
