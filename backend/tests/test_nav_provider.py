"""NAV provider client tests."""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from basket_performance.core.cache import TTLCache
from basket_performance.core.errors import DataUnavailable
from basket_performance.core.retry import RetryPolicy
from basket_performance.providers.nav import (
    CachingPriceProvider,
    InMemoryPriceProvider,
    MfApiNavProvider,
    parse_nav_payload,
)

NAV_PAYLOAD = {
    "meta": {"scheme_code": 120503, "scheme_name": "Example Flexi Cap Fund - Direct Growth"},
    "data": [
        {"date": "03-01-2024", "nav": "52.1000"},
        {"date": "02-01-2024", "nav": "51.7500"},
        {"date": "01-01-2024", "nav": "51.2000"},
    ],
    "status": "SUCCESS",
}


class Upstream:
    """Scripted responses for ``httpx.MockTransport``."""

    def __init__(self, *responses: httpx.Response) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


def _provider(settings, upstream: Upstream, *, attempts: int = 3) -> MfApiNavProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return MfApiNavProvider(
        "https://nav.test/mf/",
        retry_policy=RetryPolicy(max_attempts=attempts, base_delay=0.0),
        client=client,
        settings=settings,
    )


def test_parse_nav_payload_sorts_and_skips_bad_rows():
    payload = {
        "data": [
            {"date": "02-01-2024", "nav": "10.5"},
            {"date": "2024-01-01", "nav": "10.0"},
            {"date": "not-a-date", "nav": "9.0"},
            {"date": "03-01-2024", "nav": "N.A."},
            {"nav": "11.0"},
            "garbage",
        ]
    }

    points = parse_nav_payload("X", payload)

    assert [(p.date, p.price) for p in points] == [(date(2024, 1, 1), 10.0), (date(2024, 1, 2), 10.5)]


async def test_fetches_and_parses_history(settings):
    upstream = Upstream(httpx.Response(200, json=NAV_PAYLOAD))
    provider = _provider(settings, upstream)

    points = await provider.get_historical_series("120503")

    assert str(upstream.requests[0].url) == "https://nav.test/mf/120503"
    assert [p.date for p in points] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
    assert points[-1].price == pytest.approx(52.1)


async def test_retries_transient_status(settings):
    upstream = Upstream(httpx.Response(503), httpx.Response(429), httpx.Response(200, json=NAV_PAYLOAD))
    provider = _provider(settings, upstream)

    points = await provider.get_historical_series("120503")

    assert len(upstream.requests) == 3
    assert len(points) == 3


async def test_gives_up_after_max_attempts(settings):
    upstream = Upstream(httpx.Response(502))
    provider = _provider(settings, upstream, attempts=2)

    with pytest.raises(DataUnavailable) as exc_info:
        await provider.get_historical_series("120503")

    assert len(upstream.requests) == 2
    assert exc_info.value.instrument_id == "120503"


async def test_client_errors_are_not_retried(settings):
    upstream = Upstream(httpx.Response(404, json={"status": "NOT_FOUND"}))
    provider = _provider(settings, upstream)

    with pytest.raises(DataUnavailable):
        await provider.get_historical_series("999999")

    assert len(upstream.requests) == 1


async def test_non_json_body_is_data_unavailable(settings):
    upstream = Upstream(httpx.Response(200, text="<html>maintenance</html>"))
    provider = _provider(settings, upstream)

    with pytest.raises(DataUnavailable):
        await provider.get_historical_series("120503")


async def test_transport_errors_are_retried(settings):
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=NAV_PAYLOAD)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = MfApiNavProvider(
        "https://nav.test/mf",
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0),
        client=client,
        settings=settings,
    )

    points = await provider.get_historical_series("120503")

    assert len(attempts) == 2
    assert len(points) == 3


def test_per_attempt_timeout_is_a_share_of_the_fetch_budget(settings):
    provider = MfApiNavProvider("https://nav.test/mf", retry_policy=RetryPolicy(max_attempts=3), settings=settings)

    assert provider.timeout_seconds == pytest.approx(settings.fetch_timeout_seconds / 3)
    assert MfApiNavProvider("https://nav.test/mf", timeout_seconds=2.0, settings=settings).timeout_seconds == 2.0


async def test_read_timeouts_are_retried(settings):
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("upstream too slow", request=request)
        return httpx.Response(200, json=NAV_PAYLOAD)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = MfApiNavProvider(
        "https://nav.test/mf",
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0),
        client=client,
        settings=settings,
    )

    points = await provider.get_historical_series("120503")

    assert len(attempts) == 2
    assert len(points) == 3


async def test_caching_provider_reuses_fetched_series():
    ticks = [0.0]
    delegate = InMemoryPriceProvider({"A": {date(2024, 1, 1): 10.0}})
    provider = CachingPriceProvider(delegate, TTLCache(60, clock=lambda: ticks[0]))

    await provider.get_historical_series("A")
    await provider.get_historical_series("A")
    assert delegate.calls == ["A"]

    ticks[0] = 61.0
    await provider.get_historical_series("A")
    assert delegate.calls == ["A", "A"]


async def test_caching_provider_does_not_cache_empty_results():
    delegate = InMemoryPriceProvider({})
    provider = CachingPriceProvider(delegate, TTLCache(60))

    assert await provider.get_historical_series("EMPTY") == []
    assert await provider.get_historical_series("EMPTY") == []
    assert delegate.calls == ["EMPTY", "EMPTY"]
