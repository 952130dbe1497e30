"""Distributed counter allocator backed by Redis INCRBY leases.

Flow Diagram — next_id()
========================
::
    ┌─────────────┐
    │  next_id()  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ asyncio.Lock │
    └──────┬──────┘
    LEASE EMPTY?  │
    ┌─────┴─────┐
    │ YES        │ NO
    ▼            │
┌─────────┐      │
│ INCRBY  │      │
│ key, N  │      │
└────┬────┘      │
     ▼           ▼
    ┌─────────────┐
    │ hand out    │
    │ next value  │
    └─────────────┘

Key Behaviours
===============
- One Redis round-trip per ``batch_size`` ids.
- Ids issued by one allocator are strictly increasing; across processes they
  are unique because every lease is a disjoint range.
- A failed lease leaves the local state untouched and raises AllocatorUnavailable.
"""

import asyncio
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from shorturl.exceptions import AllocatorUnavailable, ConfigurationError

__all__ = ["CounterAllocator"]

logger = logging.getLogger(__name__)


class CounterAllocator:
    def __init__(self, client: redis.Redis, key: str = "shorturl:counter", batch_size: int = 1000):
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {batch_size}")
        self._client = client
        self.key = key
        self.batch_size = batch_size
        self._next = 0
        self._end = -1
        self._leases_taken = 0
        self._lock = asyncio.Lock()

    @property
    def leases_taken(self) -> int:
        return self._leases_taken

    async def next_id(self) -> int:
        async with self._lock:
            if self._next > self._end:
                await self._lease_block()
            allocated_id = self._next
            self._next += 1
            return allocated_id

    async def _lease_block(self) -> None:
        """Reserve ``batch_size`` ids from the shared counter.

        Raises:
            AllocatorUnavailable: If Redis cannot be reached
        """
        try:
            end_value = int(await self._client.incrby(self.key, self.batch_size))
        except (RedisError, OSError) as exc:
            logger.error(f"Counter lease failed for {self.key}: {exc}")
            raise AllocatorUnavailable(f"Could not lease ids from {self.key}") from exc

        self._next = end_value - self.batch_size + 1
        self._end = end_value
        self._leases_taken += 1
        logger.debug(f"Leased ids {self._next}..{self._end} from {self.key}")
