"""Stats reporter tests."""

import logging

import pytest

from shorturl.reporter import LOCAL_CACHE_SIZE, PENDING_ACCESS_COUNTS, StatsReporter
from shorturl.schemas import CachedUrlPayload


@pytest.mark.asyncio
async def test_report_publishes_gauges_and_logs(local_cache, pool, aggregator, caplog):
    local_cache.put("abc123", CachedUrlPayload(id=1, short_code="abc123", original_url="https://example.com"))
    local_cache.get("abc123")
    aggregator.record("abc123", 1)
    reporter = StatsReporter(local_cache, pool, aggregator, interval_seconds=60)

    with caplog.at_level(logging.INFO, logger="shorturl"):
        await reporter.report()

    assert LOCAL_CACHE_SIZE._value.get() == 1
    assert PENDING_ACCESS_COUNTS._value.get() == 1
    assert "L1 size=1 hits=1 misses=0" in caplog.text
    assert "pending_accesses=1" in caplog.text


@pytest.mark.asyncio
async def test_close_without_start(local_cache, pool, aggregator):
    reporter = StatsReporter(local_cache, pool, aggregator, interval_seconds=60)
    await reporter.close(timeout=1.0)
