"""Periodic statistics reporter for the L1 cache, task pool and count buffer."""

import logging

from prometheus_client import Gauge

from shorturl.aggregator import AccessCountAggregator
from shorturl.local_cache import LocalCache
from shorturl.tasks import PeriodicTask, TaskPool

__all__ = ["StatsReporter"]

logger = logging.getLogger(__name__)

LOCAL_CACHE_SIZE = Gauge("shorturl_local_cache_size", "Entries currently held in the L1 cache")
LOCAL_CACHE_HIT_RATE = Gauge("shorturl_local_cache_hit_rate", "L1 cache hit rate (0..1)")
LOCAL_CACHE_EVICTIONS = Gauge("shorturl_local_cache_evictions", "L1 capacity evictions since start")
TASK_POOL_QUEUE_DEPTH = Gauge("shorturl_task_pool_queue_depth", "Tasks waiting in the worker pool queue")
PENDING_ACCESS_COUNTS = Gauge("shorturl_pending_access_counts", "Accesses buffered but not yet persisted")


class StatsReporter:
    def __init__(
        self,
        local_cache: LocalCache,
        pool: TaskPool,
        aggregator: AccessCountAggregator,
        interval_seconds: float = 300.0,
    ):
        self._local_cache = local_cache
        self._pool = pool
        self._aggregator = aggregator
        self._periodic = PeriodicTask("stats-reporter", interval_seconds, self.report)

    async def report(self) -> None:
        cache_stats = self._local_cache.stats()
        pool_stats = self._pool.stats()
        pending = self._aggregator.pending_total()

        LOCAL_CACHE_SIZE.set(cache_stats.size)
        LOCAL_CACHE_HIT_RATE.set(cache_stats.hit_rate)
        LOCAL_CACHE_EVICTIONS.set(cache_stats.evictions)
        TASK_POOL_QUEUE_DEPTH.set(pool_stats.queued)
        PENDING_ACCESS_COUNTS.set(pending)

        logger.info(
            f"L1 size={cache_stats.size} hits={cache_stats.hits} misses={cache_stats.misses} "
            f"hit_rate={cache_stats.hit_rate:.2%} evictions={cache_stats.evictions} | "
            f"pool queued={pool_stats.queued} completed={pool_stats.completed} "
            f"failed={pool_stats.failed} caller_runs={pool_stats.caller_runs} | "
            f"pending_accesses={pending}"
        )

    def start(self) -> None:
        self._periodic.start()

    async def close(self, timeout: float = 10.0) -> None:
        await self._periodic.stop(timeout)
