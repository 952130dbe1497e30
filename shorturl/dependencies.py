"""Dependency injection with a singleton service manager.

All long-lived collaborators (Redis client, store, caches, worker pool,
aggregator, reporter, strategy) are built once at startup by ServiceManager
and shared by every request. Only the RequestContext is per request.
"""

import logging
from dataclasses import asdict
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shorturl.aggregator import AccessCountAggregator
from shorturl.config import Settings, get_settings
from shorturl.database import async_session
from shorturl.instrumentation import RequestContext, setup_logging
from shorturl.local_cache import LocalCache
from shorturl.redis import close_redis, get_redis
from shorturl.reporter import StatsReporter
from shorturl.resolver import CollisionResolver
from shorturl.schemas import CacheStatsResponse, LocalCacheStats, TaskPoolStats
from shorturl.service import ShortUrlService
from shorturl.shared_cache import RedisSharedCache
from shorturl.store import SqlAlchemyUrlStore
from shorturl.strategies import build_strategy
from shorturl.tasks import TaskPool

__all__ = [
    "ServiceManager",
    "get_request_context",
    "get_service_manager",
    "get_url_service",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Startup order: logging → Redis → strategy (fails fast on bad config) →
    store/caches → pool → aggregator/reporter schedules. Shutdown runs the
    background work down first so the final access-count flush can still
    reach the database.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, settings: Settings | None = None) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = settings or get_settings()
        self.logger: logging.Logger = setup_logging(self.settings.LOG_LEVEL)
        self.cache_client: redis.Redis = await get_redis()

        strategy = build_strategy(self.settings, self.cache_client)
        self.resolver = CollisionResolver(strategy, self.settings.MAX_COLLISION_ATTEMPTS)
        self.store = SqlAlchemyUrlStore(async_session)
        self.shared_cache = RedisSharedCache(self.cache_client)
        self.local_cache = LocalCache(
            self.settings.LOCAL_CACHE_MAX_SIZE,
            self.settings.LOCAL_CACHE_TTL_SECONDS,
        )
        self.pool = TaskPool("access-count", self.settings.TASK_POOL_WORKERS, self.settings.TASK_POOL_QUEUE_SIZE)
        self.aggregator = AccessCountAggregator(
            self.store,
            self.pool,
            self.settings.ACCESS_COUNT_FLUSH_INTERVAL_SECONDS,
        )
        self.reporter = StatsReporter(
            self.local_cache,
            self.pool,
            self.aggregator,
            self.settings.STATS_REPORT_INTERVAL_SECONDS,
        )
        self.service = ShortUrlService(
            self.settings,
            self.store,
            self.shared_cache,
            self.local_cache,
            self.resolver,
            self.aggregator,
        )

        self.pool.start()
        self.aggregator.start()
        self.reporter.start()
        self._initialized = True
        self.logger.info(
            f"Service ready: strategy={strategy.name} length={strategy.length} "
            f"alphabet_base={strategy.alphabet.base}"
        )

    def cache_stats(self) -> CacheStatsResponse:
        cache_stats = self.local_cache.stats()
        pool_stats = self.pool.stats()
        return CacheStatsResponse(
            local_cache=LocalCacheStats(
                size=cache_stats.size,
                hits=cache_stats.hits,
                misses=cache_stats.misses,
                evictions=cache_stats.evictions,
                hit_rate=cache_stats.hit_rate,
            ),
            task_pool=TaskPoolStats(**asdict(pool_stats)),
            pending_access_counts=self.aggregator.pending_total(),
        )

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        timeout = self.settings.SHUTDOWN_TIMEOUT_SECONDS
        await self.reporter.close(timeout)
        await self.aggregator.close(timeout)
        await self.pool.shutdown(timeout)
        await close_redis()
        self._initialized = False
        self.logger.info("Service stopped")


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(request: Request) -> RequestContext:
    """Build the per-request context from client info and tracing headers."""
    context = RequestContext(
        trace_id=request.headers.get("x-trace-id"),
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    request_id = request.headers.get("x-request-id")
    if request_id:
        context.request_id = request_id
    return context


def get_url_service(manager: ServiceManager = Depends(get_service_manager)) -> ShortUrlService:
    return manager.service
