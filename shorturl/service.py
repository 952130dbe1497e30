"""Short URL service layer: creation and tiered resolution.

Architecture Overview
=====================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                     ShortUrlService                         │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │ CollisionResolver│  │ LocalCache (L1) │  │ Aggregator   │ │
    │  │ • strategy       │  │ • TLRU, bounded │  │ • buffer     │ │
    │  │ • max attempts   │  │ • hit/miss stats│  │ • batch flush│ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │   UrlStore (L3) │  │ SharedCache (L2)│  │  TaskPool       │
    │   PostgreSQL    │  │  Redis, TTL     │  │  (flush workers)│
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Short Code Creation Flow
------------------------
::
    ┌─────────────┐
    │ create(url) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ resolver    │◄─────────────┐
    │ .generate() │              │ DuplicateShortCode
    └──────┬──────┘              │ (bounded retries)
           ▼                     │
    ┌─────────────┐──────────────┘
    │ L3 insert   │  must succeed
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ L2 SETEX    │  degrade on error
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ L1 put      │
    └─────────────┘

Lookup State Machine
--------------------
::
    L1_CHECK ──hit──────────────────────────────► L1_HIT
        │ miss / stale
        ▼
    L2_CHECK ──hit──► back-fill L1 ─────────────► L2_HIT
        │ miss / stale / unavailable
        ▼
    L3_CHECK ──row, live──► back-fill L2, L1 ───► L3_HIT
        │       │
        │       └─row, expired──► soft delete ──► EXPIRED
        └──no row───────────────────────────────► NOT_FOUND

Key Behaviours
===============
- A cached entry past its ``expire_at`` is never served; it is dropped and the
  lookup falls through to the next tier.
- L2 failures are logged at WARNING and skipped; L3 failures raise
  StoreUnavailable, which is never reported as not-found.
- Found lookups record one access in the aggregator; nothing else on the read
  path writes to the database.
"""

import datetime
import logging
from dataclasses import dataclass

from prometheus_client import Counter
from pydantic import ValidationError

from shorturl.aggregator import AccessCountAggregator
from shorturl.config import Settings
from shorturl.enums import LookupOutcome, RequestStatus
from shorturl.exceptions import CodeSpaceExhausted, DuplicateShortCode, SharedCacheUnavailable, StoreUnavailable
from shorturl.instrumentation import RequestContext, instrument, mask_sensitive
from shorturl.local_cache import LocalCache
from shorturl.models import UrlMapping
from shorturl.resolver import CollisionResolver
from shorturl.schemas import CachedUrlPayload, UrlStats
from shorturl.shared_cache import SharedCache
from shorturl.store import UrlStore

__all__ = ["Resolution", "ShortUrlService"]

logger = logging.getLogger(__name__)

URL_LOOKUPS_TOTAL = Counter(
    "shorturl_lookups_total",
    "Short code lookups by terminal outcome",
    ["outcome"],
)
SHARED_CACHE_ERRORS_TOTAL = Counter(
    "shorturl_shared_cache_errors_total",
    "L2 operations that failed and were skipped",
    ["operation"],
)


@dataclass(frozen=True)
class Resolution:
    outcome: LookupOutcome
    original_url: str | None = None
    mapping_id: int | None = None

    @property
    def found(self) -> bool:
        return self.outcome.found


class ShortUrlService:
    """Create short codes and resolve them through L1 → L2 → L3.

    Example:
        >>> service = ShortUrlService(settings, store, shared_cache, local_cache, resolver, aggregator)
        >>> code = await service.create_short_code("https://example.com/a/long/path")
        >>> await service.resolve(code)
        'https://example.com/a/long/path'
    """

    def __init__(
        self,
        settings: Settings,
        store: UrlStore,
        shared_cache: SharedCache,
        local_cache: LocalCache,
        resolver: CollisionResolver,
        aggregator: AccessCountAggregator,
    ):
        self.settings = settings
        self.store = store
        self.shared_cache = shared_cache
        self.local_cache = local_cache
        self.resolver = resolver
        self.aggregator = aggregator

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create(
        self,
        original_url: str,
        expire_seconds: int | None = None,
        ctx: RequestContext | None = None,
    ) -> CachedUrlPayload:
        """Generate a code for ``original_url`` and persist the mapping.

        Args:
            original_url: Target URL (must be non-empty)
            expire_seconds: Lifetime in seconds; ``None`` or ``<= 0`` never expires
            ctx: Request context for correlated logging

        Returns:
            CachedUrlPayload: The stored mapping as held in the caches

        Raises:
            ValueError: If the URL is empty
            CodeSpaceExhausted: If no free code was found within the allowed attempts
            ClockRegression, AllocatorUnavailable: Strategy failures
            StoreUnavailable: If the insert could not be performed
        """
        if not original_url or not original_url.strip():
            raise ValueError("original_url must not be empty")

        expire_at = None
        if expire_seconds is not None and expire_seconds > 0:
            expire_at = _utcnow() + datetime.timedelta(seconds=expire_seconds)

        async with instrument("create", ctx, url=original_url):
            code, mapping_id = await self._generate_and_insert(original_url, expire_at)
            payload = CachedUrlPayload(
                id=mapping_id,
                short_code=code,
                original_url=original_url,
                expire_at=expire_at,
            )
            await self._write_shared(payload)
            self.local_cache.put(code, payload)

        return payload

    async def create_short_code(
        self,
        original_url: str,
        expire_seconds: int | None = None,
        ctx: RequestContext | None = None,
    ) -> str:
        payload = await self.create(original_url, expire_seconds, ctx)
        return payload.short_code

    async def lookup(self, code: str) -> Resolution:
        """Walk the cache tiers for ``code`` and report where it was found.

        Raises:
            StoreUnavailable: If L3 had to be consulted and could not answer
        """
        resolution = await self._lookup_tiers(code)
        URL_LOOKUPS_TOTAL.labels(outcome=resolution.outcome).inc()
        if resolution.found:
            self.aggregator.record(code, resolution.mapping_id)
        return resolution

    async def resolve(self, code: str, ctx: RequestContext | None = None) -> str | None:
        async with instrument("resolve", ctx, short_code=code) as call:
            resolution = await self.lookup(code)
            if not resolution.found:
                call.status = RequestStatus.NOT_FOUND
        return resolution.original_url if resolution.found else None

    async def get_stats(self, code: str) -> UrlStats | None:
        """Persisted access count plus whatever is still buffered for ``code``."""
        mapping = await self.store.find_by_code(code)
        if mapping is None:
            return None

        return UrlStats(
            short_code=mapping.short_code,
            original_url=mapping.original_url,
            short_url=self.short_url(mapping.short_code),
            access_count=mapping.access_count + self.aggregator.pending(code),
            created_at=mapping.created_at,
            expire_at=mapping.expire_at,
        )

    def short_url(self, code: str) -> str:
        return f"{self.settings.BASE_URL.rstrip('/')}/{code}"

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _generate_and_insert(
        self, original_url: str, expire_at: datetime.datetime | None
    ) -> tuple[str, int]:
        max_attempts = self.resolver.max_attempts
        for attempt in range(1, max_attempts + 1):
            code = await self.resolver.generate(original_url, self.store.exists)
            mapping = UrlMapping(
                original_url=original_url,
                short_code=code,
                expire_at=expire_at,
                access_count=0,
                is_deleted=False,
            )
            try:
                mapping_id = await self.store.insert(mapping)
            except DuplicateShortCode:
                logger.warning(f"Insert race on {code} (attempt {attempt}/{max_attempts}), regenerating")
                continue
            logger.debug(f"Stored {code} -> {mask_sensitive(original_url)} as id {mapping_id}")
            return code, mapping_id

        raise CodeSpaceExhausted(max_attempts)

    async def _lookup_tiers(self, code: str) -> Resolution:
        entry = self.local_cache.get(code)
        if entry is not None:
            if not entry.is_expired():
                return Resolution(LookupOutcome.L1_HIT, entry.original_url, entry.id)
            self.local_cache.invalidate(code)

        entry = await self._read_shared(code)
        if entry is not None:
            self.local_cache.put(code, entry)
            return Resolution(LookupOutcome.L2_HIT, entry.original_url, entry.id)

        mapping = await self.store.find_by_code(code)
        if mapping is None:
            return Resolution(LookupOutcome.NOT_FOUND)

        payload = CachedUrlPayload.model_validate(mapping)
        if payload.is_expired():
            await self._expire(payload)
            return Resolution(LookupOutcome.EXPIRED)

        await self._write_shared(payload)
        self.local_cache.put(code, payload)
        return Resolution(LookupOutcome.L3_HIT, payload.original_url, payload.id)

    def _shared_key(self, code: str) -> str:
        return f"{self.settings.SHARED_CACHE_KEY_PREFIX}:{code}"

    async def _read_shared(self, code: str) -> CachedUrlPayload | None:
        key = self._shared_key(code)
        try:
            raw = await self.shared_cache.get(key)
        except SharedCacheUnavailable as exc:
            SHARED_CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            logger.warning(f"Shared cache read skipped for {code}: {exc}")
            return None
        if raw is None:
            return None

        try:
            entry = CachedUrlPayload.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(f"Discarding unreadable shared cache entry for {code}: {exc}")
            await self._delete_shared(code)
            return None

        if entry.is_expired():
            await self._delete_shared(code)
            return None
        return entry

    async def _write_shared(self, payload: CachedUrlPayload) -> None:
        ttl = self.settings.SHARED_CACHE_TTL_SECONDS
        remaining = payload.remaining_seconds()
        if remaining is not None:
            if remaining <= 0:
                return
            ttl = min(ttl, int(remaining) or 1)
        try:
            await self.shared_cache.set_with_ttl(
                self._shared_key(payload.short_code), payload.model_dump_json(), ttl
            )
        except SharedCacheUnavailable as exc:
            SHARED_CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            logger.warning(f"Shared cache write skipped for {payload.short_code}: {exc}")

    async def _delete_shared(self, code: str) -> None:
        try:
            await self.shared_cache.delete(self._shared_key(code))
        except SharedCacheUnavailable as exc:
            SHARED_CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
            logger.warning(f"Shared cache delete skipped for {code}: {exc}")

    async def _expire(self, payload: CachedUrlPayload) -> None:
        self.local_cache.invalidate(payload.short_code)
        await self._delete_shared(payload.short_code)
        try:
            await self.store.mark_deleted(payload.id)
        except StoreUnavailable as exc:
            logger.warning(f"Soft delete of expired {payload.short_code} deferred: {exc}")
            return
        logger.info(f"Expired short code {payload.short_code} soft-deleted")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
