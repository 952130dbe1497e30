"""Durable L3 store contract and its SQLAlchemy implementation.

Flow Diagram — insert()
=======================
::
    ┌─────────────┐
    │ insert(row) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ add + commit │
    └──────┬──────┘
    OUTCOME?   │
    ┌─────┬───┴────────────┐
    │ OK  │ IntegrityError  │ SQLAlchemyError / OSError
    ▼     ▼                 ▼
┌──────┐ ┌──────────────┐ ┌──────────────────┐
│ id   │ │ Duplicate    │ │ StoreUnavailable │
│      │ │ ShortCode    │ │                  │
└──────┘ └──────────────┘ └──────────────────┘

Key Behaviours
===============
- Every call opens its own session and closes it on exit.
- Soft-deleted rows are invisible to ``find_by_code`` and ``exists``.
- ``increment_access_count`` is a single atomic UPDATE ... SET n = n + delta.
- A lookup failure is StoreUnavailable, never a silent ``None``.
"""

import datetime
import logging

from prometheus_client import Counter
from sqlalchemy import exists, false, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shorturl.exceptions import DuplicateShortCode, StoreUnavailable
from shorturl.models import UrlMapping

__all__ = ["SqlAlchemyUrlStore", "UrlStore"]

logger = logging.getLogger(__name__)

DATABASE_READS_TOTAL = Counter(
    "shorturl_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shorturl_database_writes_total",
    "Total database write operations",
)


class UrlStore:
    """Contract for the authoritative mapping store."""

    async def find_by_code(self, code: str) -> UrlMapping | None:
        raise NotImplementedError

    async def insert(self, mapping: UrlMapping) -> int:
        raise NotImplementedError

    async def increment_access_count(self, mapping_id: int, delta: int) -> int:
        raise NotImplementedError

    async def exists(self, code: str) -> bool:
        raise NotImplementedError

    async def mark_deleted(self, mapping_id: int) -> None:
        raise NotImplementedError


class SqlAlchemyUrlStore(UrlStore):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def find_by_code(self, code: str) -> UrlMapping | None:
        statement = select(UrlMapping).where(
            UrlMapping.short_code == code,
            UrlMapping.is_deleted == false(),
        )
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(statement)
                mapping = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            logger.error(f"Lookup failed for {code}: {exc}")
            raise StoreUnavailable(f"Lookup failed for {code}") from exc
        DATABASE_READS_TOTAL.inc()

        if mapping is not None and mapping.expire_at is not None and mapping.expire_at.tzinfo is None:
            mapping.expire_at = mapping.expire_at.replace(tzinfo=datetime.timezone.utc)
        return mapping

    async def insert(self, mapping: UrlMapping) -> int:
        try:
            async with self._sessionmaker() as session:
                session.add(mapping)
                await session.commit()
                await session.refresh(mapping)
        except IntegrityError as exc:
            logger.warning(f"Insert lost the race for {mapping.short_code}")
            raise DuplicateShortCode(mapping.short_code) from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error(f"Insert failed for {mapping.short_code}: {exc}")
            raise StoreUnavailable(f"Insert failed for {mapping.short_code}") from exc
        DATABASE_WRITES_TOTAL.inc()
        return mapping.id

    async def increment_access_count(self, mapping_id: int, delta: int) -> int:
        statement = (
            update(UrlMapping)
            .where(UrlMapping.id == mapping_id)
            .values(access_count=UrlMapping.access_count + delta)
        )
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(statement)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"Access count update failed for id {mapping_id}") from exc
        DATABASE_WRITES_TOTAL.inc()
        return result.rowcount

    async def exists(self, code: str) -> bool:
        statement = select(
            exists().where(
                UrlMapping.short_code == code,
                UrlMapping.is_deleted == false(),
            )
        )
        try:
            async with self._sessionmaker() as session:
                found = await session.scalar(statement)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"Existence check failed for {code}") from exc
        DATABASE_READS_TOTAL.inc()
        return bool(found)

    async def mark_deleted(self, mapping_id: int) -> None:
        statement = update(UrlMapping).where(UrlMapping.id == mapping_id).values(is_deleted=True)
        try:
            async with self._sessionmaker() as session:
                await session.execute(statement)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"Soft delete failed for id {mapping_id}") from exc
        DATABASE_WRITES_TOTAL.inc()
