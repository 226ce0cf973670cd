"""Declarative base and the columns every Service Vault table shares."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, MetaData, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from servicevault_api.common.ids import generate_uuid7
from servicevault_api.common.time import utc_now

__all__ = ["NAMING_CONVENTION", "Base", "PrimaryKeyMixin", "TimestampsMixin", "metadata"]

# Constraint names must match migrations/versions so Alembic diffs stay clean.
NAMING_CONVENTION: dict[str, str] = {
    "ix": "%(table_name)s_%(column_0_name)s_idx",
    "uq": "%(table_name)s_%(column_0_name)s_key",
    "ck": "%(table_name)s_%(constraint_name)s_check",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
    "pk": "%(table_name)s_pkey",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Base(DeclarativeBase):
    metadata = metadata


class PrimaryKeyMixin:
    """UUIDv7 ``id`` assigned by the application before insert.

    Stored as native ``uuid`` on PostgreSQL and as 32 hex characters on SQLite.
    """

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid7)


class TimestampsMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        server_default=func.now(),
    )
