"""Shared pytest fixtures: in-memory tiers, a sqlite-backed store, and the API client."""

import datetime
import itertools
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shorturl.aggregator import AccessCountAggregator
from shorturl.config import Settings
from shorturl.database import Base
from shorturl.dependencies import ServiceManager, get_service_manager, get_url_service
from shorturl.encoding import Alphabet
from shorturl.exceptions import DuplicateShortCode, SharedCacheUnavailable, StoreUnavailable
from shorturl.local_cache import LocalCache
from shorturl.main import app
from shorturl.models import UrlMapping
from shorturl.resolver import CollisionResolver
from shorturl.service import ShortUrlService
from shorturl.shared_cache import SharedCache
from shorturl.store import SqlAlchemyUrlStore, UrlStore
from shorturl.strategies import RandomStrategy
from shorturl.tasks import TaskPool


# ============================================================================
# IN-MEMORY TIERS
# ============================================================================


class InMemoryUrlStore(UrlStore):
    """Dict-backed UrlStore that counts calls and can be told to fail."""

    def __init__(self):
        self.rows: dict[int, UrlMapping] = {}
        self._ids = itertools.count(1)
        self.find_calls = 0
        self.insert_calls = 0
        self.increment_calls: list[tuple[int, int]] = []
        self.deleted_ids: list[int] = []
        self.unavailable = False
        self.fail_increments = False
        self.race_codes: set[str] = set()

    def _active(self, code: str) -> UrlMapping | None:
        for row in self.rows.values():
            if row.short_code == code and not row.is_deleted:
                return row
        return None

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailable("store is down")

    async def find_by_code(self, code: str) -> UrlMapping | None:
        self.find_calls += 1
        self._check()
        return self._active(code)

    async def insert(self, mapping: UrlMapping) -> int:
        self.insert_calls += 1
        self._check()
        if mapping.short_code in self.race_codes:
            self.race_codes.discard(mapping.short_code)
            raise DuplicateShortCode(mapping.short_code)
        if self._active(mapping.short_code) is not None:
            raise DuplicateShortCode(mapping.short_code)
        mapping.id = next(self._ids)
        if mapping.access_count is None:
            mapping.access_count = 0
        mapping.is_deleted = bool(mapping.is_deleted)
        mapping.created_at = datetime.datetime.now(datetime.timezone.utc)
        self.rows[mapping.id] = mapping
        return mapping.id

    async def increment_access_count(self, mapping_id: int, delta: int) -> int:
        self.increment_calls.append((mapping_id, delta))
        if self.fail_increments:
            raise StoreUnavailable("increment failed")
        row = self.rows.get(mapping_id)
        if row is None:
            return 0
        row.access_count += delta
        return 1

    async def exists(self, code: str) -> bool:
        self._check()
        return self._active(code) is not None

    async def mark_deleted(self, mapping_id: int) -> None:
        self._check()
        self.deleted_ids.append(mapping_id)
        self.rows[mapping_id].is_deleted = True


class InMemorySharedCache(SharedCache):
    """Dict-backed SharedCache recording TTLs; ``unavailable`` simulates an outage."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.get_calls = 0
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise SharedCacheUnavailable("redis is down")

    async def get(self, key: str) -> str | None:
        self.get_calls += 1
        self._check()
        return self.values.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check()
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self._check()
        self.values.pop(key, None)
        self.ttls.pop(key, None)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BASE_URL="http://sho.rt",
        SHORT_CODE_LENGTH=6,
        MAX_COLLISION_ATTEMPTS=10,
        LOCAL_CACHE_MAX_SIZE=100,
        LOCAL_CACHE_TTL_SECONDS=3600,
        SHARED_CACHE_TTL_SECONDS=86_400,
    )


@pytest.fixture
def store() -> InMemoryUrlStore:
    return InMemoryUrlStore()


@pytest.fixture
def shared_cache() -> InMemorySharedCache:
    return InMemorySharedCache()


@pytest.fixture
def local_cache(settings: Settings) -> LocalCache:
    return LocalCache(settings.LOCAL_CACHE_MAX_SIZE, settings.LOCAL_CACHE_TTL_SECONDS)


@pytest_asyncio.fixture
async def pool() -> AsyncGenerator[TaskPool, None]:
    task_pool = TaskPool("test-pool", workers=2, queue_size=100)
    yield task_pool
    await task_pool.shutdown(timeout=1.0)


@pytest.fixture
def aggregator(store: InMemoryUrlStore, pool: TaskPool) -> AccessCountAggregator:
    return AccessCountAggregator(store, pool, interval_seconds=60)


@pytest.fixture
def resolver(settings: Settings) -> CollisionResolver:
    strategy = RandomStrategy(Alphabet.from_name("base62"), settings.SHORT_CODE_LENGTH)
    return CollisionResolver(strategy, settings.MAX_COLLISION_ATTEMPTS)


@pytest.fixture
def service(settings, store, shared_cache, local_cache, resolver, aggregator) -> ShortUrlService:
    return ShortUrlService(settings, store, shared_cache, local_cache, resolver, aggregator)


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Mock Redis client."""
    redis_client = AsyncMock(spec=redis.Redis)
    redis_client.get = AsyncMock(return_value=None)
    redis_client.setex = AsyncMock(return_value=True)
    redis_client.delete = AsyncMock(return_value=1)
    redis_client.incrby = AsyncMock(return_value=1000)
    redis_client.ping = AsyncMock(return_value=True)
    return redis_client


# ============================================================================
# SQLITE-BACKED STORE
# ============================================================================


@pytest_asyncio.fixture
async def sessionmaker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shorturl.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sql_store(sessionmaker) -> SqlAlchemyUrlStore:
    return SqlAlchemyUrlStore(sessionmaker)


# ============================================================================
# API CLIENT
# ============================================================================


@pytest.fixture
def manager(service, local_cache, pool, aggregator, mock_redis) -> ServiceManager:
    service_manager = ServiceManager()
    service_manager.service = service
    service_manager.local_cache = local_cache
    service_manager.pool = pool
    service_manager.aggregator = aggregator
    service_manager.cache_client = mock_redis
    yield service_manager
    vars(service_manager).clear()


@pytest_asyncio.fixture
async def client(manager: ServiceManager, service: ShortUrlService) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> ServiceManager:
        return manager

    def override_get_url_service() -> ShortUrlService:
        return service

    app.dependency_overrides[get_service_manager] = override_get_service_manager
    app.dependency_overrides[get_url_service] = override_get_url_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
