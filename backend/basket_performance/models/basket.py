"""Basket configuration models."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from basket_performance.db.base import Base


class BasketRecord(Base):
    __tablename__ = "basket"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    risk_level: Mapped[str] = mapped_column(String(16), default="moderate")
    latest_rolling_summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    positions: Mapped[list["BasketPositionRecord"]] = relationship(
        back_populates="basket",
        cascade="all, delete-orphan",
        order_by="BasketPositionRecord.sort_order",
        lazy="selectin",
    )


class BasketPositionRecord(Base):
    __tablename__ = "basket_position"
    __table_args__ = (UniqueConstraint("basket_id", "instrument_id", name="uq_basket_position_instrument"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    basket_id: Mapped[str] = mapped_column(ForeignKey("basket.id", ondelete="CASCADE"), index=True)
    instrument_id: Mapped[str] = mapped_column(String(64))
    display_name: Mapped[str] = mapped_column(String(255))
    weight_percent: Mapped[float] = mapped_column(Float)
    inception_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    basket: Mapped[BasketRecord] = relationship(back_populates="positions")


__all__ = ["BasketRecord", "BasketPositionRecord"]
