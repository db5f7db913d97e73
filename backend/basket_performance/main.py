"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from basket_performance.api.routes import get_performance_router
from basket_performance.config import AppSettings, get_settings
from basket_performance.core.clock import Clock, SystemClock
from basket_performance.core.errors import BasketNotFound, BasketValidationError, DataUnavailable, EngineError
from basket_performance.core.logging import setup_logging
from basket_performance.core.telemetry import setup_telemetry
from basket_performance.db import Database
from basket_performance.providers.nav import PriceDataProvider, build_price_provider
from basket_performance.services.scheduler import RecalculationScheduler
from basket_performance.services.snapshots import SnapshotService
from basket_performance.services.stores import BasketStore, SnapshotStore, SqlBasketStore, SqlSnapshotStore

logger = logging.getLogger(__name__)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BasketNotFound)
    async def _basket_not_found(request: Request, exc: BasketNotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(BasketValidationError)
    async def _basket_invalid(request: Request, exc: BasketValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})

    @app.exception_handler(DataUnavailable)
    async def _data_unavailable(request: Request, exc: DataUnavailable) -> JSONResponse:
        logger.warning("Request %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    @app.exception_handler(EngineError)
    async def _engine_error(request: Request, exc: EngineError) -> JSONResponse:
        logger.error("Request %s failed", request.url.path, exc_info=exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


def create_app(
    settings: AppSettings | None = None,
    *,
    database: Database | None = None,
    baskets: BasketStore | None = None,
    snapshots: SnapshotStore | None = None,
    provider: PriceDataProvider | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Wire stores, provider, snapshot service and scheduler into an app.

    When both stores are injected no database is created, which is how the
    tests run the API against in-memory stores.
    """

    settings = settings or get_settings()
    setup_logging()
    clock = clock or SystemClock(settings.timezone)

    if baskets is None or snapshots is None:
        database = database or Database(settings.database_url)
        baskets = baskets or SqlBasketStore(database)
        snapshots = snapshots or SqlSnapshotStore(database)
    provider = provider or build_price_provider(settings)

    service = SnapshotService(baskets, snapshots, provider, settings=settings, clock=clock)
    scheduler = RecalculationScheduler(service, settings=settings, clock=clock)

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting %s with settings %s", settings.app_name, settings.dict_for_logging())
        if database is not None:
            await database.create_all()
        if settings.scheduler_enabled:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            closer = getattr(getattr(provider, "delegate", provider), "aclose", None)
            if closer is not None:
                await closer()
            if database is not None:
                await database.dispose()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=_lifespan)
    app.state.settings = settings
    app.state.snapshot_service = service
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    app.include_router(get_performance_router(service, scheduler, settings))
    setup_telemetry(app, settings, engine=database.engine if database is not None else None)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, object]:
        """Return service readiness metadata."""

        last = scheduler.last_summary
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "timezone": settings.timezone,
            "scheduler_running": scheduler.running,
            "last_run": last.to_dict() if last else None,
        }

    return app


__all__ = ["create_app"]
