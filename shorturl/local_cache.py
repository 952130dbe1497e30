"""Process-local L1 cache for short code lookups.

Bounded by size and by time: every entry lives at most ``ttl_seconds`` and
never past the mapping's own ``expire_at``. Hit, miss and eviction counters
feed the cache stats endpoint and the periodic reporter.
"""

import threading
import time
from dataclasses import dataclass

from cachetools import TLRUCache

from shorturl.schemas import CachedUrlPayload

__all__ = ["CacheStats", "LocalCache"]


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class _CountingTLRUCache(TLRUCache):
    """TLRUCache that counts capacity evictions."""

    def __init__(self, maxsize, ttu, timer):
        super().__init__(maxsize, ttu, timer=timer)
        self.evictions = 0

    def popitem(self):
        item = super().popitem()
        self.evictions += 1
        return item


class LocalCache:
    def __init__(self, max_size: int = 10_000, ttl_seconds: float = 3600, timer=time.time):
        self.ttl_seconds = ttl_seconds
        self._timer = timer
        self._cache = _CountingTLRUCache(max_size, self._time_to_use, timer)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def _time_to_use(self, key: str, value: CachedUrlPayload, now: float) -> float:
        deadline = now + self.ttl_seconds
        if value.expire_at is not None:
            deadline = min(deadline, value.expire_at.timestamp())
        return deadline

    def get(self, code: str) -> CachedUrlPayload | None:
        with self._lock:
            entry = self._cache.get(code)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def put(self, code: str, entry: CachedUrlPayload) -> None:
        with self._lock:
            self._cache[code] = entry

    def invalidate(self, code: str) -> None:
        with self._lock:
            self._cache.pop(code, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            self._cache.expire()
            return CacheStats(
                size=len(self._cache),
                hits=self._hits,
                misses=self._misses,
                evictions=self._cache.evictions,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
