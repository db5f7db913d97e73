"""Basket configuration and snapshot stores (in-memory and SQLAlchemy)."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import noload

from basket_performance.db.database import Database
from basket_performance.models import BasketPositionRecord, BasketRecord, PerformanceSnapshotRecord
from basket_performance.services.baskets import Basket, Position

logger = logging.getLogger(__name__)


@dataclass
class PerformanceSnapshot:
    """One basket's computed performance for one calendar day."""

    basket_id: str
    calculation_date: date
    calculated_at: datetime
    basket_metrics: dict[str, Any]
    instrument_metrics: list[dict[str, Any]] = field(default_factory=list)
    rolling_stats: dict[str, Any] | None = None
    rolling_status: str | None = None
    window_start: date | None = None
    window_end: date | None = None
    sample_count: int = 0


class BasketStore(Protocol):
    async def get(self, basket_id: str) -> Basket | None:
        ...

    async def list_active(self) -> list[Basket]:
        ...

    async def save_rolling_summary(
        self, basket_id: str, summary: dict[str, Any], calculated_at: datetime
    ) -> None:
        ...


class SnapshotStore(Protocol):
    async def find(self, basket_id: str, day: date) -> PerformanceSnapshot | None:
        ...

    async def upsert(self, basket_id: str, day: date, snapshot: PerformanceSnapshot) -> PerformanceSnapshot:
        ...

    async def latest(self, basket_id: str) -> PerformanceSnapshot | None:
        ...

    async def history(self, basket_id: str, limit: int = 30) -> list[PerformanceSnapshot]:
        ...


# In-memory implementations


class InMemoryBasketStore:
    """Basket store for tests and single-process demos."""

    def __init__(self, baskets: list[Basket] | None = None) -> None:
        self._baskets: dict[str, Basket] = {}
        for basket in baskets or []:
            self.add(basket)

    def add(self, basket: Basket) -> None:
        self._baskets[basket.id] = copy.deepcopy(basket)

    async def get(self, basket_id: str) -> Basket | None:
        basket = self._baskets.get(basket_id)
        return copy.deepcopy(basket) if basket else None

    async def list_active(self) -> list[Basket]:
        return [copy.deepcopy(b) for b in self._baskets.values() if b.is_active]

    async def save_rolling_summary(
        self, basket_id: str, summary: dict[str, Any], calculated_at: datetime
    ) -> None:
        basket = self._baskets.get(basket_id)
        if basket is None:
            return
        basket.latest_rolling_summary = copy.deepcopy(summary)
        basket.last_calculated_at = calculated_at


class InMemorySnapshotStore:
    """Snapshot store keyed by ``(basket_id, calculation_date)``."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, date], PerformanceSnapshot] = {}

    async def find(self, basket_id: str, day: date) -> PerformanceSnapshot | None:
        row = self._rows.get((basket_id, day))
        return copy.deepcopy(row) if row else None

    async def upsert(self, basket_id: str, day: date, snapshot: PerformanceSnapshot) -> PerformanceSnapshot:
        stored = replace(copy.deepcopy(snapshot), basket_id=basket_id, calculation_date=day)
        self._rows[(basket_id, day)] = stored
        return copy.deepcopy(stored)

    async def latest(self, basket_id: str) -> PerformanceSnapshot | None:
        history = await self.history(basket_id, limit=1)
        return history[0] if history else None

    async def history(self, basket_id: str, limit: int = 30) -> list[PerformanceSnapshot]:
        rows = [row for (key, _), row in self._rows.items() if key == basket_id]
        rows.sort(key=lambda row: row.calculation_date, reverse=True)
        return [copy.deepcopy(row) for row in rows[:limit]]


# SQLAlchemy implementations


def _to_basket(record: BasketRecord) -> Basket:
    return Basket(
        id=record.id,
        name=record.name,
        positions=[
            Position(
                instrument_id=p.instrument_id,
                display_name=p.display_name,
                weight_percent=p.weight_percent,
                inception_date=p.inception_date,
                category=p.category,
            )
            for p in record.positions
        ],
        is_active=record.is_active,
        risk_level=record.risk_level,
        latest_rolling_summary=record.latest_rolling_summary,
        last_calculated_at=record.last_calculated_at,
    )


def _to_snapshot(record: PerformanceSnapshotRecord) -> PerformanceSnapshot:
    return PerformanceSnapshot(
        basket_id=record.basket_id,
        calculation_date=record.calculation_date,
        calculated_at=record.calculated_at,
        basket_metrics=dict(record.basket_metrics or {}),
        instrument_metrics=list(record.instrument_metrics or []),
        rolling_stats=record.rolling_stats,
        rolling_status=record.rolling_status,
        window_start=record.window_start,
        window_end=record.window_end,
        sample_count=record.sample_count or 0,
    )


def _apply_snapshot(record: PerformanceSnapshotRecord, snapshot: PerformanceSnapshot) -> None:
    record.calculated_at = snapshot.calculated_at
    record.basket_metrics = snapshot.basket_metrics
    record.instrument_metrics = snapshot.instrument_metrics
    record.rolling_stats = snapshot.rolling_stats
    record.rolling_status = snapshot.rolling_status
    record.window_start = snapshot.window_start
    record.window_end = snapshot.window_end
    record.sample_count = snapshot.sample_count


class SqlBasketStore:
    def __init__(self, database: Database) -> None:
        self.database = database

    async def get(self, basket_id: str) -> Basket | None:
        async with self.database.session() as session:
            record = await session.get(BasketRecord, basket_id)
            return _to_basket(record) if record else None

    async def list_active(self) -> list[Basket]:
        async with self.database.session() as session:
            result = await session.execute(
                select(BasketRecord).where(BasketRecord.is_active.is_(True)).order_by(BasketRecord.name)
            )
            return [_to_basket(record) for record in result.scalars().all()]

    async def save_rolling_summary(
        self, basket_id: str, summary: dict[str, Any], calculated_at: datetime
    ) -> None:
        async with self.database.session() as session:
            record = await session.get(BasketRecord, basket_id)
            if record is None:
                logger.warning("Cannot store rolling summary; basket %s disappeared", basket_id)
                return
            record.latest_rolling_summary = summary
            record.last_calculated_at = calculated_at
            await session.commit()

    async def save_basket(self, basket: Basket) -> None:
        """Insert or replace a basket configuration (positions included)."""

        async with self.database.session() as session:
            # noload keeps old position rows out of the session; they are removed by statement below
            record = await session.get(BasketRecord, basket.id, options=[noload(BasketRecord.positions)])
            if record is None:
                record = BasketRecord(id=basket.id, positions=[])
                session.add(record)
            record.name = basket.name
            record.is_active = basket.is_active
            record.risk_level = basket.risk_level
            await session.flush()
            await session.execute(
                delete(BasketPositionRecord)
                .where(BasketPositionRecord.basket_id == basket.id)
                .execution_options(synchronize_session=False)
            )
            session.add_all(
                BasketPositionRecord(
                    basket=record,
                    instrument_id=p.instrument_id,
                    display_name=p.display_name,
                    weight_percent=p.weight_percent,
                    inception_date=p.inception_date,
                    category=p.category,
                    sort_order=index,
                )
                for index, p in enumerate(basket.positions)
            )
            await session.commit()


class SqlSnapshotStore:
    def __init__(self, database: Database) -> None:
        self.database = database

    @staticmethod
    def _by_key(basket_id: str, day: date):
        return select(PerformanceSnapshotRecord).where(
            PerformanceSnapshotRecord.basket_id == basket_id,
            PerformanceSnapshotRecord.calculation_date == day,
        )

    async def find(self, basket_id: str, day: date) -> PerformanceSnapshot | None:
        async with self.database.session() as session:
            record = (await session.execute(self._by_key(basket_id, day))).scalar_one_or_none()
            return _to_snapshot(record) if record else None

    async def upsert(self, basket_id: str, day: date, snapshot: PerformanceSnapshot) -> PerformanceSnapshot:
        snapshot = replace(snapshot, basket_id=basket_id, calculation_date=day)
        for attempt in (1, 2):
            async with self.database.session() as session:
                record = (await session.execute(self._by_key(basket_id, day))).scalar_one_or_none()
                if record is None:
                    record = PerformanceSnapshotRecord(basket_id=basket_id, calculation_date=day)
                    session.add(record)
                _apply_snapshot(record, snapshot)
                try:
                    await session.commit()
                except IntegrityError:
                    # a concurrent writer inserted the same key first; replace its row instead
                    await session.rollback()
                    if attempt == 2:
                        raise
                    continue
                return _to_snapshot(record)
        raise AssertionError("unreachable")  # pragma: no cover

    async def latest(self, basket_id: str) -> PerformanceSnapshot | None:
        history = await self.history(basket_id, limit=1)
        return history[0] if history else None

    async def history(self, basket_id: str, limit: int = 30) -> list[PerformanceSnapshot]:
        async with self.database.session() as session:
            result = await session.execute(
                select(PerformanceSnapshotRecord)
                .where(PerformanceSnapshotRecord.basket_id == basket_id)
                .order_by(PerformanceSnapshotRecord.calculation_date.desc())
                .limit(limit)
            )
            return [_to_snapshot(record) for record in result.scalars().all()]


__all__ = [
    "BasketStore",
    "InMemoryBasketStore",
    "InMemorySnapshotStore",
    "PerformanceSnapshot",
    "SnapshotStore",
    "SqlBasketStore",
    "SqlSnapshotStore",
]
