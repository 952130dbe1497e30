"""Access-count aggregation: buffer resolutions in memory, persist in batches.

Flow Diagram — flush()
======================
::
    ┌──────────────────┐
    │ resolve() hit     │──► record(code, id): buffer[code].delta += 1
    └──────────────────┘
                 ...every ACCESS_COUNT_FLUSH_INTERVAL_SECONDS...
    ┌──────────────────┐
    │ flush()           │
    │ swap buffer ↔ {}  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ one UPDATE per    │
    │ code via TaskPool │
    └────────┬─────────┘
    FAILED?  │
    ┌────────┴────────┐
    │ NO               │ YES
    ▼                  ▼
┌─────────┐     ┌──────────────┐
│ counted │     │ merge delta  │
│         │     │ back, retry  │
└─────────┘     │ next cycle   │
                └──────────────┘

Key Behaviours
===============
- N resolutions of one code between flushes become a single increment of N.
- The swap happens under a lock, so a resolution lands in exactly one cycle.
- At-least-once is not guaranteed: deltas still buffered when the process
  dies are lost.
- A cancelled flush puts every code without a confirmed outcome back in the
  buffer, so a timed-out shutdown reports the real unpersisted total.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass

from prometheus_client import Counter

from shorturl.store import UrlStore
from shorturl.tasks import PeriodicTask, TaskPool

__all__ = ["AccessCountAggregator", "PendingCount"]

logger = logging.getLogger(__name__)

ACCESS_COUNTS_FLUSHED_TOTAL = Counter(
    "shorturl_access_counts_flushed_total",
    "Access count increments persisted to the database",
)
ACCESS_COUNT_FLUSH_FAILURES_TOTAL = Counter(
    "shorturl_access_count_flush_failures_total",
    "Per-code access count updates that failed and were re-buffered",
)


@dataclass
class PendingCount:
    mapping_id: int
    delta: int


class AccessCountAggregator:
    def __init__(self, store: UrlStore, pool: TaskPool, interval_seconds: float = 60.0):
        self._store = store
        self._pool = pool
        self._buffer: dict[str, PendingCount] = {}
        self._buffer_lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._periodic = PeriodicTask("access-count-flush", interval_seconds, self.flush)

    def record(self, code: str, mapping_id: int) -> None:
        with self._buffer_lock:
            entry = self._buffer.get(code)
            if entry is None:
                self._buffer[code] = PendingCount(mapping_id, 1)
            else:
                entry.delta += 1

    def pending(self, code: str) -> int:
        with self._buffer_lock:
            entry = self._buffer.get(code)
            return entry.delta if entry else 0

    def pending_total(self) -> int:
        with self._buffer_lock:
            return sum(entry.delta for entry in self._buffer.values())

    async def flush(self) -> int:
        """Persist every buffered delta; return how many accesses were written.

        Failed codes are merged back into the live buffer and retried on the
        next cycle.
        """
        async with self._flush_lock:
            with self._buffer_lock:
                batch, self._buffer = self._buffer, {}
            if not batch:
                return 0

            # codes whose outcome is known; the rest go back if we are cancelled
            settled: set[str] = set()
            try:
                persisted = await self._flush_batch(batch, settled)
            except asyncio.CancelledError:
                for code, entry in batch.items():
                    if code not in settled:
                        self._merge_back(code, entry)
                raise

            ACCESS_COUNTS_FLUSHED_TOTAL.inc(persisted)
            logger.info(f"Flushed {persisted} accesses across {len(batch)} codes")
            return persisted

    def start(self) -> None:
        self._periodic.start()

    async def close(self, timeout: float = 10.0) -> None:
        """Stop the schedule, wait for the in-flight flush, then flush once more."""
        await self._periodic.stop(timeout)
        try:
            await asyncio.wait_for(self.flush(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Final access count flush timed out, {self.pending_total()} accesses not persisted")

    async def _flush_batch(self, batch: dict[str, PendingCount], settled: set[str]) -> int:
        submitted = []
        for code, entry in batch.items():
            try:
                future = await self._pool.submit(
                    self._store.increment_access_count, entry.mapping_id, entry.delta
                )
            except RuntimeError as exc:
                logger.error(f"Could not schedule access count update for {code}: {exc}")
                self._merge_back(code, entry)
                settled.add(code)
                continue
            submitted.append((code, entry, future))

        persisted = 0
        for code, entry, future in submitted:
            try:
                affected = await future
            except Exception as exc:
                ACCESS_COUNT_FLUSH_FAILURES_TOTAL.inc()
                logger.warning(f"Access count update failed for {code}, keeping +{entry.delta}: {exc}")
                self._merge_back(code, entry)
                settled.add(code)
                continue
            settled.add(code)
            if not affected:
                logger.debug(f"Mapping {entry.mapping_id} for {code} is gone, dropping +{entry.delta}")
                continue
            persisted += entry.delta
        return persisted

    def _merge_back(self, code: str, entry: PendingCount) -> None:
        with self._buffer_lock:
            current = self._buffer.get(code)
            if current is None:
                self._buffer[code] = entry
            else:
                current.delta += entry.delta
