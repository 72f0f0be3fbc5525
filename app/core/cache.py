from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from threading import Lock
from time import monotonic
from typing import Any


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Small thread-safe cache; entries expire ``ttl_seconds`` after being set."""

    def __init__(self, ttl_seconds: float = 60) -> None:
        self._ttl = max(0.0, float(ttl_seconds))
        self._store: dict[Hashable, _CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: Hashable) -> Any | None:
        now = monotonic()
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            if entry.expires_at < now:
                self._store.pop(key, None)
                return None
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._store[key] = _CacheEntry(value=value, expires_at=monotonic() + self._ttl)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        # Misses are not cached so a newly created profile shows up at once.
        if value is not None:
            self.set(key, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
