from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from municipal_api.db.base import (
    ActiveMixin,
    Base,
    IdPkMixin,
    SedeScopedMixin,
    SoftDeleteMixin,
    TimestampMixin,
)


class PermisoEstatus(str, enum.Enum):
    SOLICITADO = "SOLICITADO"
    EN_REVISION = "EN_REVISION"
    APROBADO = "APROBADO"
    RECHAZADO = "RECHAZADO"
    VENCIDO = "VENCIDO"
    CANCELADO = "CANCELADO"


class MetodoPago(str, enum.Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA = "TARJETA"
    TRANSFERENCIA = "TRANSFERENCIA"


class PagoEstatus(str, enum.Enum):
    PAGADO = "PAGADO"
    CANCELADO = "CANCELADO"
    REEMBOLSADO = "REEMBOLSADO"


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [m.value for m in e])


class TipoPermiso(IdPkMixin, SedeScopedMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Permit type with its base cost and default validity."""
    __tablename__ = "tipos_permiso"

    nombre: Mapped[str] = mapped_column(Text, nullable=False)
    descripcion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    campos_personalizados: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    costo_base: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
    num_umas_base: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    num_salarios_base: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    vigencia_defecto: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default="30")


class Permiso(IdPkMixin, SedeScopedMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Permit issued to a citizen."""
    __tablename__ = "permisos"

    tipo_permiso_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tipos_permiso.id", ondelete="RESTRICT"), nullable=False
    )
    folio: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    descripcion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    nombre_ciudadano: Mapped[str] = mapped_column(Text, nullable=False)
    documento_ciudadano: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    domicilio_ciudadano: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    telefono_ciudadano: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email_ciudadano: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    costo: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
    fecha_emision: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fecha_vencimiento: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    vigencia_dias: Mapped[int] = mapped_column(Integer, nullable=False)
    estatus: Mapped[PermisoEstatus] = mapped_column(
        _enum(PermisoEstatus, "permiso_estatus"), nullable=False, default=PermisoEstatus.SOLICITADO
    )
    fecha_solicitud: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), nullable=False
    )
    fecha_aprobacion: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fecha_rechazo: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    observaciones: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    motivo_rechazo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class PagoPermiso(IdPkMixin, SedeScopedMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Payment (or refund, when `es_reembolso`) collected for a permit."""
    __tablename__ = "pagos_permisos"

    permiso_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("permisos.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    nombre_ciudadano: Mapped[str] = mapped_column(Text, nullable=False)
    documento_ciudadano: Mapped[str] = mapped_column(Text, nullable=False)
    costo_base: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    descuento_pct: Mapped[float] = mapped_column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    total: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    metodo_pago: Mapped[MetodoPago] = mapped_column(_enum(MetodoPago, "metodo_pago"), nullable=False)
    referencia_pago: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estatus: Mapped[PagoEstatus] = mapped_column(
        _enum(PagoEstatus, "pago_estatus"), nullable=False, default=PagoEstatus.PAGADO
    )
    fecha_pago: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), nullable=False
    )
    usuario_cobro_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    autorizado_por: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    es_reembolso: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    pago_original_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("pagos_permisos.id", ondelete="SET NULL"), nullable=True
    )
    observaciones: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
