"""Historical NAV/price providers."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Protocol

import httpx

from basket_performance.config import AppSettings, get_settings
from basket_performance.core.cache import TTLCache
from basket_performance.core.errors import DataUnavailable
from basket_performance.core.retry import TRANSIENT_STATUS_CODES, RetryPolicy, TransientHTTPError
from basket_performance.services.timeseries import PricePoint

logger = logging.getLogger(__name__)

_DATE_FORMATS = ("%d-%m-%Y", "%Y-%m-%d", "%Y%m%d")


class PriceDataProvider(Protocol):
    """Source of historical price series, one instrument at a time."""

    async def get_historical_series(self, instrument_id: str) -> list[PricePoint]:
        ...


def _parse_date(raw: str) -> date | None:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def parse_nav_payload(instrument_id: str, payload: Mapping[str, Any]) -> list[PricePoint]:
    """Parse ``{"data": [{"date": "dd-mm-yyyy", "nav": "12.34"}, ...]}``; bad rows are skipped."""

    rows = payload.get("data") or []
    points: list[PricePoint] = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        raw_date = row.get("date")
        raw_nav = row.get("nav")
        if raw_date is None or raw_nav is None:
            continue
        day = _parse_date(str(raw_date))
        if day is None:
            continue
        try:
            nav = float(raw_nav)
        except (TypeError, ValueError):
            continue
        points.append(PricePoint(instrument_id, day, nav))
    points.sort(key=lambda point: point.date)
    return points


class MfApiNavProvider:
    """HTTP client for an mfapi.in style NAV history endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = (base_url or settings.nav_api_base_url).rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        # per-attempt timeout is a share of the overall fetch budget
        self.timeout_seconds = timeout_seconds or settings.fetch_timeout_seconds / max(1, self.retry_policy.max_attempts)
        self._client = client
        self._owns_client = client is None

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch_payload(self, instrument_id: str) -> Any:
        client = await self._http()
        url = f"{self.base_url}/{instrument_id}"
        response = await client.get(url)
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientHTTPError(response.status_code, url)
        if response.status_code >= 400:
            raise DataUnavailable(instrument_id, f"upstream status {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise DataUnavailable(instrument_id, "upstream returned non-JSON content") from exc

    async def get_historical_series(self, instrument_id: str) -> list[PricePoint]:
        try:
            payload = await self.retry_policy.run(
                lambda: self._fetch_payload(instrument_id),
                description=f"NAV fetch for {instrument_id}",
            )
        except (httpx.HTTPError, TransientHTTPError) as exc:
            raise DataUnavailable(instrument_id, str(exc) or type(exc).__name__) from exc
        if not isinstance(payload, Mapping):
            raise DataUnavailable(instrument_id, "unexpected payload shape")
        points = parse_nav_payload(instrument_id, payload)
        logger.debug("Fetched %d NAV rows for %s", len(points), instrument_id)
        return points


class InMemoryPriceProvider:
    """Simple price provider for tests and examples."""

    def __init__(
        self,
        prices: Mapping[str, Mapping[date, float] | Iterable[PricePoint]] | None = None,
        *,
        failures: Mapping[str, BaseException] | None = None,
    ) -> None:
        self._prices: dict[str, list[PricePoint]] = {}
        for instrument_id, series in (prices or {}).items():
            self.set_series(instrument_id, series)
        self.failures: dict[str, BaseException] = dict(failures or {})
        self.calls: list[str] = []

    def set_series(self, instrument_id: str, series: Mapping[date, float] | Iterable[PricePoint]) -> None:
        if isinstance(series, Mapping):
            points = [PricePoint(instrument_id, day, float(price)) for day, price in series.items()]
        else:
            points = list(series)
        self._prices[instrument_id] = sorted(points, key=lambda point: point.date)

    async def get_historical_series(self, instrument_id: str) -> list[PricePoint]:
        self.calls.append(instrument_id)
        failure = self.failures.get(instrument_id)
        if failure is not None:
            raise failure
        return list(self._prices.get(instrument_id, []))


class CachingPriceProvider:
    """Cache wrapper so one scheduler run does not refetch the same instrument."""

    def __init__(self, delegate: PriceDataProvider, cache: TTLCache[list[PricePoint]]) -> None:
        self.delegate = delegate
        self.cache = cache

    async def get_historical_series(self, instrument_id: str) -> list[PricePoint]:
        cached = self.cache.get(instrument_id)
        if cached is not None:
            return list(cached)
        points = await self.delegate.get_historical_series(instrument_id)
        if points:
            self.cache.set(instrument_id, list(points))
        return points


def build_price_provider(settings: AppSettings) -> PriceDataProvider:
    """Return the production provider, cached when a TTL is configured."""

    provider: PriceDataProvider = MfApiNavProvider(settings=settings)
    if settings.price_cache_ttl_minutes > 0:
        provider = CachingPriceProvider(provider, TTLCache(settings.price_cache_ttl_minutes * 60))
    return provider


__all__ = [
    "CachingPriceProvider",
    "InMemoryPriceProvider",
    "MfApiNavProvider",
    "PriceDataProvider",
    "build_price_provider",
    "parse_nav_payload",
]
