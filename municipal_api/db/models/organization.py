from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, Numeric, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from municipal_api.db.base import (
    ActiveMixin,
    Base,
    IdPkMixin,
    SedeScopedMixin,
    SoftDeleteMixin,
    TimestampMixin,
)


class Theme(IdPkMixin, TimestampMixin, Base):
    """Global visual theme catalogue."""
    __tablename__ = "themes"

    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    primary_color: Mapped[str] = mapped_column(Text, nullable=False, default="#1e40af")
    secondary_color: Mapped[str] = mapped_column(Text, nullable=False, default="#64748b")
    dark_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")


class Sede(IdPkMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Top-level organizational unit (state-level tenant)."""
    __tablename__ = "sedes"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    legal_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    state: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    theme_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("themes.id", ondelete="SET NULL"), nullable=True
    )

    subsedes: Mapped[list["Subsede"]] = relationship(back_populates="sede", lazy="selectin")


class Subsede(IdPkMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Municipal-level unit nested under a sede."""
    __tablename__ = "subsedes"
    __table_args__ = (
        UniqueConstraint("sede_id", "code", name="uq_subsedes_sede_code"),
    )

    sede_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sedes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    population: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    municipality_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sede: Mapped["Sede"] = relationship(back_populates="subsedes", lazy="selectin")


class Configuracion(IdPkMixin, SedeScopedMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Per sede/subsede client configuration (branding, fiscal parameters)."""
    __tablename__ = "configuraciones"

    nombre_cliente: Mapped[str] = mapped_column(Text, nullable=False)
    ciudad: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    titular: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    salario_minimo: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
    valor_uma: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
    theme_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("themes.id", ondelete="SET NULL"), nullable=True
    )
