"""Configuration management for the short URL core.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shorturl.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    strategy = settings.SHORT_CODE_STRATEGY

**Step 3 — Override through the environment**::
    SHORT_CODE_STRATEGY=snowflake SHORT_CODE_LENGTH=11 uvicorn shorturl.main:app

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Out-of-range values raise ValidationError at startup, never per request.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shorturl"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (L3, authoritative)
    DATABASE_URL: str = "postgresql+asyncpg://shorturl:shorturl@db:5432/shorturl"

    # Redis (L2 cache and the shared counter)
    REDIS_URL: str = "redis://redis:6379/0"

    # Short code generation
    SHORT_CODE_LENGTH: int = Field(6, ge=4, le=16)
    SHORT_CODE_ALPHABET: str = "base62"
    SHORT_CODE_STRATEGY: str = "random"
    MAX_COLLISION_ATTEMPTS: int = Field(10, ge=1)

    # L1 process-local cache
    LOCAL_CACHE_MAX_SIZE: int = Field(10_000, ge=1)
    LOCAL_CACHE_TTL_SECONDS: int = Field(3600, ge=1)

    # L2 shared cache
    SHARED_CACHE_TTL_SECONDS: int = Field(86_400, ge=1)
    SHARED_CACHE_KEY_PREFIX: str = "shorturl"

    # Counter strategy leases
    COUNTER_KEY: str = "shorturl:counter"
    COUNTER_BATCH_SIZE: int = Field(1000, ge=1)

    # Snowflake strategy
    SNOWFLAKE_DATACENTER_ID: int = Field(1, ge=0)
    SNOWFLAKE_WORKER_ID: int = Field(1, ge=0)
    SNOWFLAKE_EPOCH_MS: int = 1_609_459_200_000  # 2021-01-01T00:00:00Z

    # Background work
    ACCESS_COUNT_FLUSH_INTERVAL_SECONDS: float = Field(60.0, gt=0)
    TASK_POOL_WORKERS: int = Field(8, ge=1)
    TASK_POOL_QUEUE_SIZE: int = Field(1000, ge=1)
    STATS_REPORT_INTERVAL_SECONDS: float = Field(300.0, gt=0)
    SHUTDOWN_TIMEOUT_SECONDS: float = Field(10.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
