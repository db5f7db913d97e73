"""Small in-memory TTL cache with an injectable clock."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Generic, Hashable, TypeVar

T = TypeVar("T")


@dataclass
class _CacheItem(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Thread-safe TTL cache; ``clock`` returns monotonic seconds."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = max(0.0, ttl_seconds)
        self._clock = clock
        self._data: dict[Hashable, _CacheItem[T]] = {}
        self._lock = Lock()

    def get(self, key: Hashable) -> T | None:
        now = self._clock()
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            if item.expires_at <= now:
                self._data.pop(key, None)
                return None
            return item.value

    def set(self, key: Hashable, value: T, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else max(0.0, ttl_seconds)
        with self._lock:
            self._data[key] = _CacheItem(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


__all__ = ["TTLCache"]
