"""Shared retry policy for outbound calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import httpx

from basket_performance.config import AppSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class TransientHTTPError(RuntimeError):
    """Raised for upstream responses that are worth retrying."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"Transient upstream status {status_code} for {url}")
        self.status_code = status_code


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * multiplier ** (attempt - 1)`` capped at ``max_delay``."""

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 10.0
    retry_on: tuple[type[BaseException], ...] = field(
        default=(httpx.TransportError, TransientHTTPError)
    )

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    description,
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                await sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryPolicy", "TransientHTTPError", "TRANSIENT_STATUS_CODES"]
