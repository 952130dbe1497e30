"""Service layer tests: creation, tiered lookup, expiry and degradation."""

import datetime
import time

import pytest

from shorturl.encoding import Alphabet
from shorturl.enums import LookupOutcome
from shorturl.exceptions import CodeSpaceExhausted, StoreUnavailable
from shorturl.local_cache import LocalCache
from shorturl.models import UrlMapping
from shorturl.resolver import CollisionResolver
from shorturl.schemas import CachedUrlPayload
from shorturl.service import ShortUrlService
from shorturl.strategies import ShortCodeStrategy

URL = "https://example.com/some/long/path?q=1"


class ScriptedStrategy(ShortCodeStrategy):
    def __init__(self, candidates: list[str]):
        super().__init__(Alphabet.from_name("base62"), 6)
        self._candidates = iter(candidates)

    @property
    def name(self) -> str:
        return "scripted"

    async def candidate(self, url: str) -> str:
        return next(self._candidates)


def build_service(settings, store, shared_cache, local_cache, aggregator, candidates, max_attempts=10):
    resolver = CollisionResolver(ScriptedStrategy(candidates), max_attempts)
    return ShortUrlService(settings, store, shared_cache, local_cache, resolver, aggregator)


def past(seconds: int = 60) -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(seconds=seconds)


# ============================================================================
# CREATE
# ============================================================================


@pytest.mark.asyncio
async def test_create_writes_all_three_tiers(service, store, shared_cache, local_cache):
    payload = await service.create(URL)

    assert len(payload.short_code) == 6
    assert store.rows[payload.id].original_url == URL
    assert f"shorturl:{payload.short_code}" in shared_cache.values
    assert shared_cache.ttls[f"shorturl:{payload.short_code}"] == 86_400
    assert local_cache.get(payload.short_code) == payload
    assert payload.expire_at is None


@pytest.mark.asyncio
async def test_create_with_expiry_caps_shared_ttl(service, shared_cache):
    payload = await service.create(URL, expire_seconds=120)

    assert payload.expire_at is not None
    assert 118 <= shared_cache.ttls[f"shorturl:{payload.short_code}"] <= 120


@pytest.mark.asyncio
@pytest.mark.parametrize("expire_seconds", [None, 0, -5])
async def test_non_positive_expiry_means_never(service, expire_seconds):
    payload = await service.create(URL, expire_seconds=expire_seconds)
    assert payload.expire_at is None


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "   "])
async def test_empty_url_is_rejected(service, store, url):
    with pytest.raises(ValueError):
        await service.create(url)
    assert store.insert_calls == 0


@pytest.mark.asyncio
async def test_insert_race_regenerates(settings, store, shared_cache, local_cache, aggregator):
    store.race_codes = {"aaaaaa"}
    service = build_service(settings, store, shared_cache, local_cache, aggregator, ["aaaaaa", "bbbbbb"])

    code = await service.create_short_code(URL)

    assert code == "bbbbbb"
    assert store.insert_calls == 2


@pytest.mark.asyncio
async def test_exhaustion_when_every_candidate_is_taken(settings, store, shared_cache, local_cache, aggregator):
    await store.insert(UrlMapping(original_url=URL, short_code="aaaaaa"))
    service = build_service(settings, store, shared_cache, local_cache, aggregator, ["aaaaaa"] * 3, max_attempts=3)

    with pytest.raises(CodeSpaceExhausted):
        await service.create(URL)
    assert store.insert_calls == 1


@pytest.mark.asyncio
async def test_create_survives_shared_cache_outage(service, store, shared_cache, local_cache):
    shared_cache.unavailable = True

    payload = await service.create(URL)

    assert payload.id in store.rows
    assert shared_cache.values == {}
    assert local_cache.get(payload.short_code) is not None


@pytest.mark.asyncio
async def test_create_fails_when_store_is_down(service, store):
    store.unavailable = True
    with pytest.raises(StoreUnavailable):
        await service.create(URL)


# ============================================================================
# TIERED LOOKUP
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_after_create_is_an_l1_hit(service, store, shared_cache):
    code = await service.create_short_code(URL)

    resolution = await service.lookup(code)

    assert resolution.outcome is LookupOutcome.L1_HIT
    assert resolution.original_url == URL
    assert store.find_calls == 0
    assert shared_cache.get_calls == 0


@pytest.mark.asyncio
async def test_l1_miss_falls_back_to_l2_and_backfills(service, store, shared_cache, local_cache):
    code = await service.create_short_code(URL)
    local_cache.invalidate(code)

    resolution = await service.lookup(code)

    assert resolution.outcome is LookupOutcome.L2_HIT
    assert store.find_calls == 0
    assert local_cache.get(code).original_url == URL


@pytest.mark.asyncio
async def test_l2_miss_falls_back_to_l3_and_backfills(service, store, shared_cache, local_cache):
    code = await service.create_short_code(URL)
    local_cache.invalidate(code)
    shared_cache.values.clear()

    resolution = await service.lookup(code)

    assert resolution.outcome is LookupOutcome.L3_HIT
    assert store.find_calls == 1
    assert f"shorturl:{code}" in shared_cache.values
    assert (await service.lookup(code)).outcome is LookupOutcome.L1_HIT


@pytest.mark.asyncio
async def test_unknown_code_is_not_found(service, aggregator):
    assert await service.resolve("nope00") is None
    assert (await service.lookup("nope00")).outcome is LookupOutcome.NOT_FOUND
    assert aggregator.pending_total() == 0


@pytest.mark.asyncio
async def test_shared_cache_outage_degrades_to_store(service, store, shared_cache, local_cache):
    code = await service.create_short_code(URL)
    local_cache.invalidate(code)
    shared_cache.unavailable = True

    assert await service.resolve(code) == URL
    assert store.find_calls == 1


@pytest.mark.asyncio
async def test_store_outage_is_not_reported_as_not_found(service, store, shared_cache, local_cache):
    code = await service.create_short_code(URL)
    local_cache.invalidate(code)
    shared_cache.values.clear()
    store.unavailable = True

    with pytest.raises(StoreUnavailable):
        await service.resolve(code)


@pytest.mark.asyncio
async def test_unreadable_shared_entry_is_discarded(service, store, shared_cache):
    await store.insert(UrlMapping(original_url=URL, short_code="abc123"))
    shared_cache.values["shorturl:abc123"] = "not json"

    assert (await service.lookup("abc123")).outcome is LookupOutcome.L3_HIT
    assert CachedUrlPayload.model_validate_json(shared_cache.values["shorturl:abc123"]).original_url == URL


# ============================================================================
# EXPIRY
# ============================================================================


@pytest.mark.asyncio
async def test_expired_row_is_soft_deleted_and_purged(service, store, shared_cache):
    mapping_id = await store.insert(UrlMapping(original_url=URL, short_code="abc123", expire_at=past()))
    stale = CachedUrlPayload(id=mapping_id, short_code="abc123", original_url=URL, expire_at=past())
    shared_cache.values["shorturl:abc123"] = stale.model_dump_json()

    resolution = await service.lookup("abc123")

    assert resolution.outcome is LookupOutcome.EXPIRED
    assert resolution.original_url is None
    assert "shorturl:abc123" not in shared_cache.values
    assert store.deleted_ids == [mapping_id]
    assert await service.resolve("abc123") is None


@pytest.mark.asyncio
async def test_stale_l1_entry_is_never_served(settings, store, shared_cache, aggregator):
    # the cache clock lags an hour behind, so it still holds the entry
    lagging = LocalCache(max_size=10, ttl_seconds=86_400, timer=lambda: time.time() - 3600)
    service = build_service(settings, store, shared_cache, lagging, aggregator, [])
    mapping_id = await store.insert(UrlMapping(original_url=URL, short_code="abc123", expire_at=past()))
    lagging.put("abc123", CachedUrlPayload(id=mapping_id, short_code="abc123", original_url=URL, expire_at=past()))

    assert await service.resolve("abc123") is None
    assert lagging.get("abc123") is None
    assert store.deleted_ids == [mapping_id]


@pytest.mark.asyncio
async def test_expiry_survives_store_outage_on_soft_delete(service, store):
    mapping_id = await store.insert(UrlMapping(original_url=URL, short_code="abc123", expire_at=past()))

    async def failing_mark_deleted(mapping_id: int) -> None:
        raise StoreUnavailable("down")

    store.mark_deleted = failing_mark_deleted

    assert (await service.lookup("abc123")).outcome is LookupOutcome.EXPIRED
    assert store.rows[mapping_id].is_deleted is False


# ============================================================================
# ACCESS COUNTS AND STATS
# ============================================================================


@pytest.mark.asyncio
async def test_fifty_resolutions_flush_as_one_increment(service, store, aggregator):
    payload = await service.create(URL)

    for _ in range(50):
        assert await service.resolve(payload.short_code) == URL

    assert await aggregator.flush() == 50
    assert store.increment_calls == [(payload.id, 50)]


@pytest.mark.asyncio
async def test_stats_include_buffered_accesses(service, aggregator):
    code = await service.create_short_code(URL)
    for _ in range(3):
        await service.resolve(code)

    stats = await service.get_stats(code)
    assert stats.access_count == 3
    assert stats.short_url == f"http://sho.rt/{code}"
    assert stats.original_url == URL

    await aggregator.flush()
    assert (await service.get_stats(code)).access_count == 3


@pytest.mark.asyncio
async def test_stats_for_unknown_code(service):
    assert await service.get_stats("nope00") is None


def test_short_url_joins_base_url(service):
    assert service.short_url("abc123") == "http://sho.rt/abc123"
