"""Access count aggregation tests."""

import asyncio
import logging

import pytest

from shorturl.aggregator import AccessCountAggregator
from shorturl.models import UrlMapping
from shorturl.tasks import TaskPool


async def seed(store, code: str) -> int:
    return await store.insert(UrlMapping(original_url=f"https://example.com/{code}", short_code=code))


@pytest.mark.asyncio
async def test_many_records_become_one_increment(store, aggregator):
    mapping_id = await seed(store, "abc123")

    for _ in range(50):
        aggregator.record("abc123", mapping_id)
    assert aggregator.pending("abc123") == 50

    assert await aggregator.flush() == 50
    assert store.increment_calls == [(mapping_id, 50)]
    assert store.rows[mapping_id].access_count == 50
    assert aggregator.pending_total() == 0


@pytest.mark.asyncio
async def test_one_increment_per_code(store, aggregator):
    first = await seed(store, "aaaaaa")
    second = await seed(store, "bbbbbb")

    for _ in range(3):
        aggregator.record("aaaaaa", first)
    aggregator.record("bbbbbb", second)

    assert aggregator.pending_total() == 4
    assert await aggregator.flush() == 4
    assert sorted(store.increment_calls) == [(first, 3), (second, 1)]


@pytest.mark.asyncio
async def test_empty_flush_touches_nothing(store, aggregator):
    assert await aggregator.flush() == 0
    assert store.increment_calls == []


@pytest.mark.asyncio
async def test_failed_updates_are_kept_for_the_next_cycle(store, aggregator):
    mapping_id = await seed(store, "abc123")
    for _ in range(5):
        aggregator.record("abc123", mapping_id)

    store.fail_increments = True
    assert await aggregator.flush() == 0
    assert aggregator.pending("abc123") == 5

    aggregator.record("abc123", mapping_id)
    store.fail_increments = False
    assert await aggregator.flush() == 6
    assert store.rows[mapping_id].access_count == 6


@pytest.mark.asyncio
async def test_vanished_mappings_are_dropped(store, aggregator):
    aggregator.record("ghost0", 999)

    assert await aggregator.flush() == 0
    assert store.increment_calls == [(999, 1)]
    assert aggregator.pending("ghost0") == 0


@pytest.mark.asyncio
async def test_closed_pool_keeps_the_buffer(store):
    mapping_id = await seed(store, "abc123")
    pool = TaskPool("closed", workers=1, queue_size=10)
    await pool.shutdown(timeout=1.0)
    aggregator = AccessCountAggregator(store, pool, interval_seconds=60)

    aggregator.record("abc123", mapping_id)
    assert await aggregator.flush() == 0
    assert aggregator.pending("abc123") == 1


@pytest.mark.asyncio
async def test_close_flushes_remaining_counts(store, pool):
    mapping_id = await seed(store, "abc123")
    aggregator = AccessCountAggregator(store, pool, interval_seconds=60)
    aggregator.start()

    for _ in range(7):
        aggregator.record("abc123", mapping_id)
    await aggregator.close(timeout=1.0)

    assert store.rows[mapping_id].access_count == 7
    assert aggregator.pending_total() == 0


@pytest.mark.asyncio
async def test_timed_out_close_reports_unpersisted_counts(store, pool, caplog):
    mapping_id = await seed(store, "abc123")

    async def slow_increment(mapping_id: int, delta: int) -> int:
        await asyncio.sleep(5)
        return 1

    store.increment_access_count = slow_increment
    aggregator = AccessCountAggregator(store, pool, interval_seconds=60)
    for _ in range(7):
        aggregator.record("abc123", mapping_id)

    with caplog.at_level(logging.WARNING, logger="shorturl"):
        await aggregator.close(timeout=0.2)

    assert aggregator.pending("abc123") == 7
    assert "7 accesses not persisted" in caplog.text
