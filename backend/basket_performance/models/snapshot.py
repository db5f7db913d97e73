"""Daily performance snapshot model."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from basket_performance.db.base import Base


class PerformanceSnapshotRecord(Base):
    __tablename__ = "performance_snapshot"
    __table_args__ = (
        UniqueConstraint("basket_id", "calculation_date", name="uq_snapshot_basket_date"),
        Index("ix_snapshot_basket_date", "basket_id", "calculation_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    basket_id: Mapped[str] = mapped_column(ForeignKey("basket.id", ondelete="CASCADE"))
    calculation_date: Mapped[date] = mapped_column(Date)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    basket_metrics: Mapped[dict[str, Any]] = mapped_column(JSON)
    instrument_metrics: Mapped[list[dict[str, Any]]] = mapped_column(JSON)
    rolling_stats: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    rolling_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    window_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)


__all__ = ["PerformanceSnapshotRecord"]
