"""In-process TTL cache shared by the source clients."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

DEFAULT_CACHE_TTL = 24 * 60 * 60.0


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


def is_cache_valid(expires_at: float | None, now: float) -> bool:
    """Check whether a cache deadline has not passed."""
    if expires_at is None:
        return False
    return now <= expires_at


class TTLCache:
    """Thread-safe key/value store with a fixed time-to-live per entry.

    Expiry is lazy: an expired entry is reported as absent by ``get`` and is
    only dropped on that read or by ``purge_expired``.
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = Lock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = _Entry(value=value, expires_at=self._clock() + self.ttl)

    def get(self, key: str) -> tuple[Any, bool]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None, False
            if not is_cache_valid(entry.expires_at, self._clock()):
                del self._data[key]
                return None, False
            return entry.value, True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data = {}

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._data.items() if not is_cache_valid(entry.expires_at, now)]
            for key in stale:
                del self._data[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
