"""SQLAlchemy ORM models for the short URL core.

Data Model Layout
=================
::
    url_mapping table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ original_url (TEXT NOT NULL)
    ├─ short_code (VARCHAR(32) NOT NULL, INDEXED)
    ├─ expire_at (TIMESTAMPTZ NULL)          NULL = never expires
    ├─ access_count (BIGINT DEFAULT 0)
    ├─ is_deleted (BOOLEAN DEFAULT false)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

    uq_url_mapping_active_code  UNIQUE (short_code) WHERE is_deleted = false

How to Use
===========
**Step 1 — Import**::
    from shorturl.models import UrlMapping

**Step 2 — Create a mapping**::
    mapping = UrlMapping(short_code="abc123", original_url="https://example.com")
    session.add(mapping)
    await session.commit()

Key Behaviours
===============
- Only one non-deleted row may hold a given short_code; soft-deleted rows
  release the code.
- access_count is only written by the access-count aggregator flush.
- created_at and updated_at are managed by the database.
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text, false, func, text
from sqlalchemy.orm import Mapped, mapped_column

from shorturl.database import Base

__all__ = ["UrlMapping"]


class UrlMapping(Base):
    __tablename__ = "url_mapping"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    short_code: Mapped[str] = mapped_column(String(32), nullable=False)
    expire_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    access_count: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0", nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index(
            "uq_url_mapping_active_code",
            "short_code",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UrlMapping(id={self.id}, short_code='{self.short_code}', "
            f"access_count={self.access_count}, is_deleted={self.is_deleted})>"
        )
