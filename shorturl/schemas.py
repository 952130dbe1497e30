"""Pydantic schemas for request/response validation and cache payloads.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    ├─ url: str (validated URL)
    └─ expire_seconds: int | None (> 0)

    ShortenResponse (Output)
    ├─ short_code: str
    ├─ short_url: str (computed)
    ├─ original_url: str
    └─ expire_at: datetime | None

    UrlStats (Output)
    ├─ short_code / original_url / short_url
    ├─ access_count: int (persisted + still buffered)
    ├─ created_at: datetime | None
    └─ expire_at: datetime | None

    CachedUrlPayload (L1 / L2 value)
    ├─ id: int
    ├─ short_code: str
    ├─ original_url: str
    └─ expire_at: datetime | None

    CacheStatsResponse (Output)
    ├─ local_cache: LocalCacheStats
    ├─ task_pool: TaskPoolStats
    └─ pending_access_counts: int

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- All datetime fields are timezone-aware.
- CachedUrlPayload is built straight from the ORM row (from_attributes) and
  serialised to JSON for the shared cache.
"""

import datetime

import validators
from pydantic import BaseModel, Field, field_validator

from shorturl.enums import HealthStatus

__all__ = [
    "CacheStatsResponse",
    "CachedUrlPayload",
    "HealthResponse",
    "LocalCacheStats",
    "ShortenRequest",
    "ShortenResponse",
    "TaskPoolStats",
    "UrlStats",
]


class ShortenRequest(BaseModel):
    url: str
    expire_seconds: int | None = Field(None, gt=0, description="Lifetime in seconds; omit for no expiry")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v


class ShortenResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    expire_at: datetime.datetime | None = None


class UrlStats(BaseModel):
    short_code: str
    original_url: str
    short_url: str
    access_count: int
    created_at: datetime.datetime | None = None
    expire_at: datetime.datetime | None = None


class CachedUrlPayload(BaseModel):
    """Cache payload for a short code, shared by the L1 and L2 tiers."""

    id: int
    short_code: str
    original_url: str
    expire_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("expire_at")
    @classmethod
    def ensure_timezone(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        # SQLite hands back naive datetimes; they are stored as UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=datetime.timezone.utc)
        return v

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expire_at is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return self.expire_at <= now

    def remaining_seconds(self, now: datetime.datetime | None = None) -> float | None:
        if self.expire_at is None:
            return None
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return (self.expire_at - now).total_seconds()


class LocalCacheStats(BaseModel):
    size: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float


class TaskPoolStats(BaseModel):
    workers: int
    queued: int
    submitted: int
    completed: int
    failed: int
    caller_runs: int


class CacheStatsResponse(BaseModel):
    local_cache: LocalCacheStats
    task_pool: TaskPoolStats
    pending_access_counts: int


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
