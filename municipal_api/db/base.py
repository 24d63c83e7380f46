from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, MetaData, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Standardized naming convention for alembic-friendly constraints/indexes.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base class with metadata naming conventions."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class IdPkMixin:
    """Mixin that provides an autoincrement integer primary key."""
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)


class TimestampMixin:
    """Mixin that provides created_at and updated_at timestamp columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), onupdate=text("now()"), nullable=False
    )


class ActiveMixin:
    """Mixin that provides the is_active flag."""
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )


class SoftDeleteMixin:
    """Mixin that provides a soft deletion timestamp; NULL means not deleted."""
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


class SedeScopedMixin:
    """Mixin for rows owned by a sede and one of its subsedes."""
    sede_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sedes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subsede_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("subsedes.id", ondelete="SET NULL"), nullable=True, index=True
    )
