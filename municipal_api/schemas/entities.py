from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, EmailStr, Field

from municipal_api.db.models import MetodoPago, PagoEstatus, PermisoEstatus
from municipal_api.schemas.auth import PermissionRead


class _Read(BaseModel):
    id: int = Field(..., description="Primary key")
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class _ScopedRead(_Read):
    sede_id: int
    subsede_id: Optional[int] = None
    is_active: bool
    deleted_at: Optional[datetime] = None


class ThemeRead(_Read):
    """Theme catalogue entry."""
    name: str
    description: Optional[str] = None
    primary_color: str
    secondary_color: str
    dark_mode: bool
    is_default: bool


class SedeRead(_Read):
    name: str
    code: str
    legal_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    theme_id: Optional[int] = None
    is_active: bool
    deleted_at: Optional[datetime] = None


class SubsedeRead(_Read):
    sede_id: int
    name: str
    code: str
    email: Optional[str] = None
    address: Optional[str] = None
    population: Optional[int] = None
    municipality_code: Optional[str] = None
    is_active: bool
    deleted_at: Optional[datetime] = None


class ConfiguracionRead(_ScopedRead):
    nombre_cliente: str
    ciudad: Optional[str] = None
    titular: Optional[str] = None
    salario_minimo: Optional[Decimal] = None
    valor_uma: Optional[Decimal] = None
    theme_id: Optional[int] = None


class TipoAgenteRead(_ScopedRead):
    tipo: str


class DepartamentoRead(_ScopedRead):
    nombre: str
    descripcion: Optional[str] = None


class AgenteRead(_ScopedRead):
    """Field agent read model."""
    nombres: str
    apellido_paterno: str
    apellido_materno: Optional[str] = None
    tipo_id: int
    cargo: Optional[str] = None
    num_plantilla: str
    num_empleado_biometrico: Optional[str] = None
    foto: Optional[str] = None
    whatsapp: Optional[str] = None
    correo: Optional[str] = None
    departamento_id: Optional[int] = None


class PatrullaRead(_ScopedRead):
    agente_id: Optional[int] = None
    marca: str
    modelo: str
    placa: str
    num_patrulla: str
    serie: Optional[str] = None


class MultaRead(_ScopedRead):
    nombre: str
    codigo: str
    descripcion: Optional[str] = None
    departamento_id: Optional[int] = None
    costo: Optional[Decimal] = None
    num_umas: Optional[Decimal] = None
    num_salarios: Optional[Decimal] = None
    recargo: Optional[Decimal] = None


class TipoPermisoRead(_ScopedRead):
    nombre: str
    descripcion: Optional[str] = None
    campos_personalizados: Optional[Any] = None
    costo_base: Optional[Decimal] = None
    num_umas_base: Optional[Decimal] = None
    num_salarios_base: Optional[Decimal] = None
    vigencia_defecto: int


class PermisoRead(_ScopedRead):
    """Citizen permit read model."""
    tipo_permiso_id: int
    folio: str
    descripcion: Optional[str] = None
    nombre_ciudadano: str
    documento_ciudadano: str
    domicilio_ciudadano: Optional[str] = None
    telefono_ciudadano: Optional[str] = None
    email_ciudadano: Optional[str] = None
    costo: Optional[Decimal] = None
    fecha_emision: datetime
    fecha_vencimiento: datetime
    vigencia_dias: int
    estatus: PermisoEstatus
    fecha_solicitud: datetime
    fecha_aprobacion: Optional[datetime] = None
    fecha_rechazo: Optional[datetime] = None
    observaciones: Optional[str] = None
    motivo_rechazo: Optional[str] = None


class PagoPermisoRead(_ScopedRead):
    """Permit payment read model; refunds carry `es_reembolso`."""
    permiso_id: int
    nombre_ciudadano: str
    documento_ciudadano: str
    costo_base: Decimal
    descuento_pct: Decimal
    total: Decimal
    metodo_pago: MetodoPago
    referencia_pago: Optional[str] = None
    estatus: PagoEstatus
    fecha_pago: datetime
    usuario_cobro_id: Optional[int] = None
    autorizado_por: Optional[int] = None
    es_reembolso: bool
    pago_original_id: Optional[int] = None
    observaciones: Optional[str] = None


ENTITY_READ_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "themes": ThemeRead,
    "permissions": PermissionRead,
    "sedes": SedeRead,
    "subsedes": SubsedeRead,
    "configuraciones": ConfiguracionRead,
    "tipos_agente": TipoAgenteRead,
    "departamentos": DepartamentoRead,
    "agentes": AgenteRead,
    "patrullas": PatrullaRead,
    "multas": MultaRead,
    "tipos_permiso": TipoPermisoRead,
    "permisos": PermisoRead,
    "pagos_permisos": PagoPermisoRead,
}


# PUBLIC_INTERFACE
def serializer_for(kind: str) -> Callable[[Any], Dict[str, Any]]:
    """Return a row -> JSON-ready dict function for an entity kind."""
    schema = ENTITY_READ_SCHEMAS[kind]

    def _serialize(row: Any) -> Dict[str, Any]:
        return schema.model_validate(row).model_dump(mode="json")

    return _serialize


class _ScopedCreate(BaseModel):
    """Owner fields of a new row; both default to the caller's own sede/subsede."""
    sede_id: Optional[int] = Field(None, ge=1, description="Owning sede (defaults to the caller's)")
    subsede_id: Optional[int] = Field(None, ge=1, description="Owning subsede (defaults to the caller's)")


class _ScopedUpdate(BaseModel):
    subsede_id: Optional[int] = Field(None, ge=1, description="Move the row to another subsede of its sede")


class SedeCreate(BaseModel):
    name: str = Field(..., min_length=2)
    code: str = Field(..., min_length=1, max_length=20)
    legal_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    theme_id: Optional[int] = Field(None, ge=1)


class SedeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    legal_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    theme_id: Optional[int] = Field(None, ge=1)


class SubsedeCreate(BaseModel):
    """New subsede; `sede_id` defaults to the caller's sede."""
    sede_id: Optional[int] = Field(None, ge=1)
    name: str = Field(..., min_length=2)
    code: str = Field(..., min_length=1, max_length=20)
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    population: Optional[int] = Field(None, ge=0)
    municipality_code: Optional[str] = None


class SubsedeUpdate(BaseModel):
    """The parent sede of a subsede never changes."""
    name: Optional[str] = Field(None, min_length=2)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    population: Optional[int] = Field(None, ge=0)
    municipality_code: Optional[str] = None


class ConfiguracionCreate(_ScopedCreate):
    nombre_cliente: str = Field(..., min_length=1)
    ciudad: Optional[str] = None
    titular: Optional[str] = None
    salario_minimo: Optional[Decimal] = Field(None, ge=0)
    valor_uma: Optional[Decimal] = Field(None, ge=0)
    theme_id: Optional[int] = Field(None, ge=1)


class ConfiguracionUpdate(_ScopedUpdate):
    nombre_cliente: Optional[str] = Field(None, min_length=1)
    ciudad: Optional[str] = None
    titular: Optional[str] = None
    salario_minimo: Optional[Decimal] = Field(None, ge=0)
    valor_uma: Optional[Decimal] = Field(None, ge=0)
    theme_id: Optional[int] = Field(None, ge=1)


class TipoAgenteCreate(_ScopedCreate):
    tipo: str = Field(..., min_length=1)


class TipoAgenteUpdate(_ScopedUpdate):
    tipo: Optional[str] = Field(None, min_length=1)


class DepartamentoCreate(_ScopedCreate):
    nombre: str = Field(..., min_length=1)
    descripcion: Optional[str] = None


class DepartamentoUpdate(_ScopedUpdate):
    nombre: Optional[str] = Field(None, min_length=1)
    descripcion: Optional[str] = None


class AgenteCreate(_ScopedCreate):
    nombres: str = Field(..., min_length=1)
    apellido_paterno: str = Field(..., min_length=1)
    apellido_materno: Optional[str] = None
    tipo_id: int = Field(..., ge=1, description="Agent type of the same sede")
    cargo: Optional[str] = None
    num_plantilla: str = Field(..., min_length=1)
    num_empleado_biometrico: Optional[str] = None
    foto: Optional[str] = None
    whatsapp: Optional[str] = None
    correo: Optional[EmailStr] = None
    departamento_id: Optional[int] = Field(None, ge=1)


class AgenteUpdate(_ScopedUpdate):
    nombres: Optional[str] = Field(None, min_length=1)
    apellido_paterno: Optional[str] = Field(None, min_length=1)
    apellido_materno: Optional[str] = None
    tipo_id: Optional[int] = Field(None, ge=1)
    cargo: Optional[str] = None
    num_plantilla: Optional[str] = Field(None, min_length=1)
    num_empleado_biometrico: Optional[str] = None
    foto: Optional[str] = None
    whatsapp: Optional[str] = None
    correo: Optional[EmailStr] = None
    departamento_id: Optional[int] = Field(None, ge=1)


class PatrullaCreate(_ScopedCreate):
    agente_id: Optional[int] = Field(None, ge=1)
    marca: str = Field(..., min_length=1)
    modelo: str = Field(..., min_length=1)
    placa: str = Field(..., min_length=1)
    num_patrulla: str = Field(..., min_length=1)
    serie: Optional[str] = None


class PatrullaUpdate(_ScopedUpdate):
    agente_id: Optional[int] = Field(None, ge=1)
    marca: Optional[str] = Field(None, min_length=1)
    modelo: Optional[str] = Field(None, min_length=1)
    placa: Optional[str] = Field(None, min_length=1)
    num_patrulla: Optional[str] = Field(None, min_length=1)
    serie: Optional[str] = None


class MultaCreate(_ScopedCreate):
    nombre: str = Field(..., min_length=1)
    codigo: str = Field(..., min_length=1)
    descripcion: Optional[str] = None
    departamento_id: Optional[int] = Field(None, ge=1)
    costo: Optional[Decimal] = Field(None, ge=0)
    num_umas: Optional[Decimal] = Field(None, ge=0)
    num_salarios: Optional[Decimal] = Field(None, ge=0)
    recargo: Optional[Decimal] = Field(None, ge=0)


class MultaUpdate(_ScopedUpdate):
    nombre: Optional[str] = Field(None, min_length=1)
    codigo: Optional[str] = Field(None, min_length=1)
    descripcion: Optional[str] = None
    departamento_id: Optional[int] = Field(None, ge=1)
    costo: Optional[Decimal] = Field(None, ge=0)
    num_umas: Optional[Decimal] = Field(None, ge=0)
    num_salarios: Optional[Decimal] = Field(None, ge=0)
    recargo: Optional[Decimal] = Field(None, ge=0)


class TipoPermisoCreate(_ScopedCreate):
    nombre: str = Field(..., min_length=1)
    descripcion: Optional[str] = None
    campos_personalizados: Optional[Any] = None
    costo_base: Optional[Decimal] = Field(None, ge=0)
    num_umas_base: Optional[Decimal] = Field(None, ge=0)
    num_salarios_base: Optional[Decimal] = Field(None, ge=0)
    vigencia_defecto: int = Field(30, ge=1, description="Default validity in days")


class TipoPermisoUpdate(_ScopedUpdate):
    nombre: Optional[str] = Field(None, min_length=1)
    descripcion: Optional[str] = None
    campos_personalizados: Optional[Any] = None
    costo_base: Optional[Decimal] = Field(None, ge=0)
    num_umas_base: Optional[Decimal] = Field(None, ge=0)
    num_salarios_base: Optional[Decimal] = Field(None, ge=0)
    vigencia_defecto: Optional[int] = Field(None, ge=1)


class PermisoCreate(_ScopedCreate):
    """
    Permit request. The folio, cost and expiry are derived from the permit type:
    cost is the type's base cost and validity defaults to the type's default.
    """
    tipo_permiso_id: int = Field(..., ge=1)
    descripcion: Optional[str] = None
    nombre_ciudadano: str = Field(..., min_length=1)
    documento_ciudadano: str = Field(..., min_length=1)
    domicilio_ciudadano: Optional[str] = None
    telefono_ciudadano: Optional[str] = None
    email_ciudadano: Optional[EmailStr] = None
    fecha_emision: Optional[datetime] = Field(None, description="Defaults to now")
    vigencia_dias: Optional[int] = Field(None, ge=1)
    observaciones: Optional[str] = None


class PermisoUpdate(_ScopedUpdate):
    """Editable permit fields; rejecting requires `motivo_rechazo`."""
    descripcion: Optional[str] = None
    nombre_ciudadano: Optional[str] = Field(None, min_length=1)
    documento_ciudadano: Optional[str] = Field(None, min_length=1)
    domicilio_ciudadano: Optional[str] = None
    telefono_ciudadano: Optional[str] = None
    email_ciudadano: Optional[EmailStr] = None
    fecha_emision: Optional[datetime] = None
    vigencia_dias: Optional[int] = Field(None, ge=1)
    estatus: Optional[PermisoEstatus] = None
    observaciones: Optional[str] = None
    motivo_rechazo: Optional[str] = None


class PagoPermisoCreate(BaseModel):
    """Payment for an approved permit; owner sede/subsede are copied from the permit."""
    permiso_id: int = Field(..., ge=1)
    costo_base: Decimal = Field(..., ge=0, decimal_places=2)
    descuento_pct: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2)
    metodo_pago: MetodoPago
    referencia_pago: Optional[str] = None
    observaciones: Optional[str] = None
    autorizado_por: Optional[int] = Field(None, ge=1, description="Required when a discount is applied")


class PagoPermisoUpdate(BaseModel):
    estatus: Optional[PagoEstatus] = None
    observaciones: Optional[str] = None
    referencia_pago: Optional[str] = None


class ReembolsoCreate(BaseModel):
    """Refund of a paid permit payment."""
    motivo_reembolso: str = Field(..., min_length=3)
    autorizado_por: int = Field(..., ge=1)


ENTITY_WRITE_SCHEMAS: Dict[str, Tuple[Type[BaseModel], Type[BaseModel]]] = {
    "sedes": (SedeCreate, SedeUpdate),
    "subsedes": (SubsedeCreate, SubsedeUpdate),
    "configuraciones": (ConfiguracionCreate, ConfiguracionUpdate),
    "tipos_agente": (TipoAgenteCreate, TipoAgenteUpdate),
    "departamentos": (DepartamentoCreate, DepartamentoUpdate),
    "agentes": (AgenteCreate, AgenteUpdate),
    "patrullas": (PatrullaCreate, PatrullaUpdate),
    "multas": (MultaCreate, MultaUpdate),
    "tipos_permiso": (TipoPermisoCreate, TipoPermisoUpdate),
    "permisos": (PermisoCreate, PermisoUpdate),
    "pagos_permisos": (PagoPermisoCreate, PagoPermisoUpdate),
}
