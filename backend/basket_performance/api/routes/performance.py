"""Basket performance read path and recalculation triggers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from basket_performance.api.dependencies import admin_guard
from basket_performance.config import AppSettings
from basket_performance.schemas import (
    RecalculateAllResponse,
    RollingSummarySchema,
    RunSummarySchema,
    SnapshotSchema,
)
from basket_performance.services.scheduler import RecalculationScheduler
from basket_performance.services.snapshots import SnapshotService

logger = logging.getLogger(__name__)


def get_performance_router(
    service: SnapshotService,
    scheduler: RecalculationScheduler,
    settings: AppSettings,
) -> APIRouter:
    router = APIRouter(prefix="/baskets", tags=["performance"])
    require_admin = admin_guard(settings)

    @router.post("/recalculate-all", response_model=RecalculateAllResponse)
    async def recalculate_all(caller: str = Depends(require_admin)) -> RecalculateAllResponse:
        summary = await scheduler.run_all()
        logger.info(
            "Recalculated all baskets (%s trigger): %d/%d successful",
            caller,
            summary.successful,
            summary.total,
        )
        return RecalculateAllResponse(
            success=True,
            message="All baskets recalculated",
            data=RunSummarySchema.model_validate(summary.to_dict()),
        )

    @router.get("/{basket_id}/performance", response_model=SnapshotSchema)
    async def get_performance(
        basket_id: str,
        compute: bool = Query(default=True, description="Compute synchronously when today's snapshot is missing"),
    ) -> SnapshotSchema:
        if compute:
            snapshot = await service.get_or_compute(basket_id)
        else:
            snapshot = await service.get_latest(basket_id)
            if snapshot is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Performance not yet computed")
        return SnapshotSchema.from_snapshot(snapshot)

    @router.get("/{basket_id}/performance/history", response_model=list[SnapshotSchema])
    async def get_performance_history(
        basket_id: str,
        limit: int = Query(default=30, ge=1, le=365),
    ) -> list[SnapshotSchema]:
        snapshots = await service.history(basket_id, limit)
        return [SnapshotSchema.from_snapshot(item) for item in snapshots]

    @router.get("/{basket_id}/rolling-summary", response_model=RollingSummarySchema)
    async def get_rolling_summary(basket_id: str) -> RollingSummarySchema:
        summary = await service.rolling_summary(basket_id)
        if summary is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rolling summary not yet computed")
        return RollingSummarySchema.model_validate(summary)

    @router.post("/{basket_id}/recalculate", response_model=SnapshotSchema)
    async def recalculate(basket_id: str, caller: str = Depends(require_admin)) -> SnapshotSchema:
        snapshot = await service.recompute(basket_id)
        logger.info("Live returns recalculated for basket %s (%s trigger)", basket_id, caller)
        return SnapshotSchema.from_snapshot(snapshot)

    return router


__all__ = ["get_performance_router"]
