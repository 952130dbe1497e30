"""L2 shared cache contract and its Redis implementation.

Key Behaviours
===============
- Values are JSON-serialised CachedUrlPayload objects under ``<prefix>:<code>``.
- Every write carries a TTL (SETEX); nothing in L2 lives forever.
- Redis and socket errors surface as SharedCacheUnavailable so callers can
  degrade to L3 instead of failing the request.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from shorturl.exceptions import SharedCacheUnavailable

__all__ = ["RedisSharedCache", "SharedCache"]

logger = logging.getLogger(__name__)


class SharedCache:
    """Contract for the shared cache tier."""

    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError


class RedisSharedCache(SharedCache):
    def __init__(self, client: redis.Redis):
        self._client = client

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise SharedCacheUnavailable(f"GET {key} failed: {exc}") from exc

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, max(1, int(ttl_seconds)), value)
        except (RedisError, OSError) as exc:
            raise SharedCacheUnavailable(f"SETEX {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError) as exc:
            raise SharedCacheUnavailable(f"DEL {key} failed: {exc}") from exc
