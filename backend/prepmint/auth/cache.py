"""Small TTL cache with an injectable clock."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

from prepmint.core.errors import ConfigurationError

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(slots=True, frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[V]):
    """Entries expire ``ttl`` seconds after ``put``; expired entries read as misses."""

    def __init__(self, default_ttl: float = 300.0, *, clock: Clock = time.monotonic) -> None:
        if default_ttl <= 0:
            raise ConfigurationError("Cache TTL must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[V]] = {}

    def get(self, key: Hashable) -> CacheEntry[V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def put(self, key: Hashable, value: V, ttl: float | None = None) -> CacheEntry[V]:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ConfigurationError("Cache TTL must be positive")
        entry = CacheEntry(value, self._clock() + ttl)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._entries.values() if not entry.expired(now))

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None


__all__ = ["TTLCache", "CacheEntry"]
