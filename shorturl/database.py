"""Database engine and session management for the durable L3 tier.

Flow Diagram — Store call
=========================
::
    ┌─────────────┐
    │ UrlStore    │
    │ operation   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_session│
    │ () per call │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ execute /   │
    │ commit      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (async with) │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables and the partial unique index

**Step 2 — Hand the sessionmaker to the store**::
    store = SqlAlchemyUrlStore(async_session)

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    init_db():  Creates all tables on startup.
    check_db():  Round-trips ``SELECT 1`` for the health endpoint.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shorturl.config import get_settings

__all__ = ["Base", "async_session", "check_db", "close_db", "engine", "init_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db(bind: AsyncEngine | None = None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db() -> None:
    async with async_session() as session:
        await session.execute(text("SELECT 1"))


async def close_db() -> None:
    await engine.dispose()
