"""Route registration helpers."""

from __future__ import annotations

from .performance import get_performance_router

__all__ = ["get_performance_router"]
