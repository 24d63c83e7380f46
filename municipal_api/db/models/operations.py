from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from municipal_api.db.base import (
    ActiveMixin,
    Base,
    IdPkMixin,
    SedeScopedMixin,
    SoftDeleteMixin,
    TimestampMixin,
)


class _ScopedEntity(IdPkMixin, SedeScopedMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin):
    pass


class TipoAgente(_ScopedEntity, Base):
    """Agent classification (e.g. transit, municipal police)."""
    __tablename__ = "tipos_agente"

    tipo: Mapped[str] = mapped_column(Text, nullable=False)


class Departamento(_ScopedEntity, Base):
    __tablename__ = "departamentos"

    nombre: Mapped[str] = mapped_column(Text, nullable=False)
    descripcion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Agente(_ScopedEntity, Base):
    """Field agent registered in a subsede."""
    __tablename__ = "agentes"

    nombres: Mapped[str] = mapped_column(Text, nullable=False)
    apellido_paterno: Mapped[str] = mapped_column(Text, nullable=False)
    apellido_materno: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tipo_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("tipos_agente.id", ondelete="RESTRICT"), nullable=False)
    cargo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    num_plantilla: Mapped[str] = mapped_column(Text, nullable=False)
    num_empleado_biometrico: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    foto: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    whatsapp: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    correo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    departamento_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("departamentos.id", ondelete="SET NULL"), nullable=True
    )


class Patrulla(_ScopedEntity, Base):
    """Patrol vehicle assigned to an agent."""
    __tablename__ = "patrullas"

    agente_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("agentes.id", ondelete="SET NULL"), nullable=True
    )
    marca: Mapped[str] = mapped_column(Text, nullable=False)
    modelo: Mapped[str] = mapped_column(Text, nullable=False)
    placa: Mapped[str] = mapped_column(Text, nullable=False)
    num_patrulla: Mapped[str] = mapped_column(Text, nullable=False)
    serie: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Multa(_ScopedEntity, Base):
    """Fine catalogue entry; amounts are fixed pesos or multiples of UMA / minimum wage."""
    __tablename__ = "multas"

    nombre: Mapped[str] = mapped_column(Text, nullable=False)
    codigo: Mapped[str] = mapped_column(Text, nullable=False)
    descripcion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    departamento_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("departamentos.id", ondelete="SET NULL"), nullable=True
    )
    costo: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
    num_umas: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    num_salarios: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    recargo: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
