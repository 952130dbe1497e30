"""Shared Redis client for the L2 cache and the counter allocator.

Flow Diagram — get_redis()
==========================
::
    ┌─────────────┐
    │ get_redis() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check global │
    │ client var   │
    └──────┬──────┘
    EXISTS?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Redis   │  │ existing│
│ client  │  │ client  │
└─────────┘  └─────────┘

Key Behaviours
===============
- Redis client is created lazily on first access.
- One client is shared by the L2 cache and the counter allocator.
- UTF-8 encoding with decode_responses for string operations.
- Connection is closed on application shutdown.
"""

import redis.asyncio as redis

from shorturl.config import get_settings

__all__ = ["close_redis", "get_redis"]

settings = get_settings()

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
