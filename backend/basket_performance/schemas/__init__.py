"""Pydantic schemas exposed by the API."""

from .performance import (
    BasketConfigRequest,
    BasketFailureSchema,
    BasketMetricsSchema,
    InstrumentMetricsSchema,
    PositionIn,
    RecalculateAllResponse,
    RollingStatsSchema,
    RollingSummarySchema,
    RunSummarySchema,
    SnapshotSchema,
    render_metric,
)

__all__ = [
    "BasketConfigRequest",
    "BasketFailureSchema",
    "BasketMetricsSchema",
    "InstrumentMetricsSchema",
    "PositionIn",
    "RecalculateAllResponse",
    "RollingStatsSchema",
    "RollingSummarySchema",
    "RunSummarySchema",
    "SnapshotSchema",
    "render_metric",
]
