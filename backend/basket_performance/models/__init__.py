"""Database model exports."""

from .basket import BasketPositionRecord, BasketRecord
from .snapshot import PerformanceSnapshotRecord

__all__ = [
    "BasketRecord",
    "BasketPositionRecord",
    "PerformanceSnapshotRecord",
]
