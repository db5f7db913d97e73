"""Error taxonomy for the performance engine."""

from __future__ import annotations


class EngineError(RuntimeError):
    """Base class for performance engine errors."""


class DataUnavailable(EngineError):
    """Raised when the price provider has no usable series for an instrument."""

    def __init__(self, instrument_id: str, reason: str = "no data") -> None:
        super().__init__(f"Price data unavailable for {instrument_id}: {reason}")
        self.instrument_id = instrument_id
        self.reason = reason


class ComputeTimeout(DataUnavailable):
    """Raised when a price fetch exceeds its time bound."""

    def __init__(self, instrument_id: str, timeout_seconds: float) -> None:
        super().__init__(instrument_id, f"timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class InsufficientCashflows(EngineError):
    """Raised when a cashflow ledger cannot produce an internal rate of return."""


class InsufficientWindowCoverage(EngineError):
    """Raised when too few rolling windows could be matched."""

    def __init__(self, sample_count: int, required: int = 2) -> None:
        super().__init__(f"Only {sample_count} rolling windows matched, need {required}")
        self.sample_count = sample_count
        self.required = required


class BasketValidationError(EngineError, ValueError):
    """Raised when a basket configuration is rejected."""


class BasketNotFound(EngineError, LookupError):
    """Raised when a basket id does not resolve to a configured basket."""

    def __init__(self, basket_id: str) -> None:
        super().__init__(f"Basket not found: {basket_id}")
        self.basket_id = basket_id


__all__ = [
    "EngineError",
    "DataUnavailable",
    "ComputeTimeout",
    "InsufficientCashflows",
    "InsufficientWindowCoverage",
    "BasketValidationError",
    "BasketNotFound",
]
