"""Pydantic schemas for baskets, snapshots and recalculation runs."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from basket_performance.services.baskets import Basket, Position, validate_weights
from basket_performance.services.stores import PerformanceSnapshot


class PositionIn(BaseModel):
    instrument_id: str = Field(..., min_length=1, examples=["120503"])
    display_name: str = Field(..., min_length=1)
    weight_percent: float = Field(..., gt=0, le=100)
    inception_date: date | None = None
    category: str | None = None

    def to_position(self) -> Position:
        return Position(
            instrument_id=self.instrument_id,
            display_name=self.display_name,
            weight_percent=self.weight_percent,
            inception_date=self.inception_date,
            category=self.category,
        )


class BasketConfigRequest(BaseModel):
    """Basket definition; weights are validated here, never at compute time."""

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1)
    positions: list[PositionIn]
    is_active: bool = True
    risk_level: Literal["low", "moderate", "high"] = "moderate"

    @model_validator(mode="after")
    def _weights_sum_to_100(self) -> "BasketConfigRequest":
        validate_weights([p.to_position() for p in self.positions])
        return self

    def to_basket(self) -> Basket:
        return Basket(
            id=self.id,
            name=self.name,
            positions=[p.to_position() for p in self.positions],
            is_active=self.is_active,
            risk_level=self.risk_level,
        )


class InstrumentMetricsSchema(BaseModel):
    instrument_id: str
    display_name: str
    weight_percent: float
    data_available: bool
    current_price: float | None = None
    current_price_date: date | None = None
    cagr_3y: float | None = None
    cagr_5y: float | None = None
    lumpsum_invested: float = 0.0
    lumpsum_value: float | None = None
    lumpsum_return: float | None = None
    lumpsum_return_percent: float | None = None
    sip_invested: float = 0.0
    sip_value: float | None = None
    sip_xirr: float | None = None


class BasketMetricsSchema(BaseModel):
    cagr_3y: float | None = None
    cagr_5y: float | None = None
    lumpsum_invested: float = 0.0
    lumpsum_value: float | None = None
    lumpsum_return: float | None = None
    lumpsum_return_percent: float | None = None
    sip_invested: float = 0.0
    sip_value: float | None = None
    sip_xirr: float | None = None
    sip_profit_percent: float | None = None


class RollingStatsSchema(BaseModel):
    mean: float | None = None
    median: float | None = None
    min: float | None = None
    max: float | None = None
    std_dev: float | None = None
    positive_percentage: float | None = None
    sample_count: int | None = None


class SnapshotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    basket_id: str
    calculation_date: date
    calculated_at: datetime
    basket_metrics: BasketMetricsSchema
    instrument_metrics: list[InstrumentMetricsSchema]
    rolling_status: Literal["ok", "insufficient"] | None = None
    rolling_stats: RollingStatsSchema | None = None
    window_start: date | None = None
    window_end: date | None = None
    sample_count: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: PerformanceSnapshot) -> "SnapshotSchema":
        return cls.model_validate(snapshot)


class InstrumentRollingSchema(RollingStatsSchema):
    instrument_id: str
    display_name: str
    status: Literal["ok", "insufficient"]


class RollingSummarySchema(BaseModel):
    status: Literal["ok", "insufficient"]
    window_days: int
    return_model: str
    basket: RollingStatsSchema
    instruments: list[InstrumentRollingSchema]
    window_start: date | None = None
    window_end: date | None = None
    sample_count: int = 0
    risk_level: str | None = None


class BasketFailureSchema(BaseModel):
    basket_id: str
    basket_name: str
    error: str


class RunSummarySchema(BaseModel):
    total: int
    successful: int
    failed: int
    errors: list[BasketFailureSchema]
    started_at: datetime | None = None
    duration_seconds: float = 0.0


class RecalculateAllResponse(BaseModel):
    success: bool
    message: str
    data: RunSummarySchema


def render_metric(value: Any, *, suffix: str = "", digits: int = 2) -> str:
    """Format a metric for display; undefined values read "not available"."""

    if value is None:
        return "not available"
    return f"{value:.{digits}f}{suffix}"


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
