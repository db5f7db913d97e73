"""Basket domain objects and configuration-time validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from basket_performance.core.errors import BasketValidationError

WEIGHT_TOTAL = 100.0
WEIGHT_TOLERANCE = 0.01


@dataclass(frozen=True)
class Position:
    instrument_id: str
    display_name: str
    weight_percent: float
    inception_date: date | None = None
    category: str | None = None

    @property
    def weight_fraction(self) -> float:
        return self.weight_percent / 100.0


@dataclass
class Basket:
    id: str
    name: str
    positions: list[Position]
    is_active: bool = True
    risk_level: str = "moderate"
    latest_rolling_summary: dict[str, Any] | None = None
    last_calculated_at: datetime | None = None

    @property
    def weights(self) -> dict[str, float]:
        """Weight fraction per instrument id."""

        totals: dict[str, float] = {}
        for position in self.positions:
            totals[position.instrument_id] = totals.get(position.instrument_id, 0.0) + position.weight_fraction
        return totals

    @property
    def instrument_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for position in self.positions:
            seen.setdefault(position.instrument_id, None)
        return list(seen)


def validate_weights(positions: Sequence[Position], *, tolerance: float = WEIGHT_TOLERANCE) -> None:
    """Reject baskets whose weights are not a valid allocation summing to 100."""

    if not positions:
        raise BasketValidationError("A basket needs at least one position")
    seen: set[str] = set()
    for position in positions:
        if not position.instrument_id:
            raise BasketValidationError("Every position needs an instrument id")
        if position.instrument_id in seen:
            raise BasketValidationError(f"Instrument {position.instrument_id} appears more than once")
        seen.add(position.instrument_id)
        if position.weight_percent <= 0 or position.weight_percent > WEIGHT_TOTAL:
            raise BasketValidationError(
                f"Weight for {position.instrument_id} must be in (0, 100], got {position.weight_percent}"
            )
    total = sum(position.weight_percent for position in positions)
    if abs(total - WEIGHT_TOTAL) > tolerance:
        raise BasketValidationError(f"Position weights must sum to 100, got {total:.4f}")


def build_basket(
    basket_id: str,
    name: str,
    positions: Iterable[Position],
    *,
    is_active: bool = True,
    risk_level: str = "moderate",
) -> Basket:
    """Create a validated basket."""

    materialised = list(positions)
    validate_weights(materialised)
    return Basket(id=basket_id, name=name, positions=materialised, is_active=is_active, risk_level=risk_level)


__all__ = [
    "Basket",
    "Position",
    "WEIGHT_TOLERANCE",
    "build_basket",
    "validate_weights",
]
