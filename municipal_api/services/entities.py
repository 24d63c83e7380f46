from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.errors import ConflictError, InvalidRequestError, NotFoundError
from municipal_api.core.identity import IdentityContext
from municipal_api.db.models import PagoEstatus, PagoPermiso, PermisoEstatus
from municipal_api.repositories.base import ScopedRepository
from municipal_api.repositories.filters import EntitySpec, build_predicate, get_spec
from municipal_api.repositories.pagination import PaginatedResult, QueryWindow, paginate
from municipal_api.repositories.predicates import MATCH_NONE, Eq, IsNull, OrderBy, Predicate, StartsWith, and_
from municipal_api.schemas.entities import ReembolsoCreate, serializer_for
from municipal_api.services.base import BaseService
from municipal_api.services.scope import ensure_in_scope, scope_for

logger = logging.getLogger(__name__)

# Foreign key column -> entity kind it points at
REFERENCES: Dict[str, str] = {
    "theme_id": "themes",
    "tipo_id": "tipos_agente",
    "departamento_id": "departamentos",
    "agente_id": "agentes",
    "tipo_permiso_id": "tipos_permiso",
    "permiso_id": "permisos",
}

RepositoryFactory = Callable[[EntitySpec], Any]
Location = Tuple[Optional[int], Optional[int]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityService(BaseService):
    """
    Generic scoped reads and writes for one entity kind.

    Every lookup goes through the caller's resolved scope: rows outside it are
    reported as not found, never as forbidden. Writes that name a target
    sede/subsede are checked with `ensure_in_scope` and refused with 403.
    Foreign keys must point at rows the caller can see in the same sede.
    """

    def __init__(
        self,
        session: AsyncSession,
        kind: str,
        repository: Optional[ScopedRepository] = None,
        repositories: Optional[RepositoryFactory] = None,
    ) -> None:
        super().__init__(session)
        self.kind = kind
        self.spec = get_spec(kind)
        self._make_repository = repositories or (lambda spec: ScopedRepository(session, spec))
        self.repo = repository or self._make_repository(self.spec)
        self._repositories: Dict[str, Any] = {kind: self.repo}
        self.serialize = serializer_for(kind)

    def _repository(self, kind: str) -> Any:
        if kind not in self._repositories:
            self._repositories[kind] = self._make_repository(get_spec(kind))
        return self._repositories[kind]

    def _visibility(self, context: IdentityContext) -> Predicate:
        return scope_for(context).to_predicate(self.spec)

    async def _lookup(self, context: IdentityContext, kind: str, entity_id: int) -> Optional[Any]:
        # soft-deleted rows are treated like missing ones
        spec = get_spec(kind)
        predicate = build_predicate(spec, scope_for(context).to_predicate(spec), {})
        return await self._repository(kind).get_visible(predicate, entity_id)

    async def _get_visible(self, context: IdentityContext, entity_id: int) -> Any:
        row = await self._lookup(context, self.kind, entity_id)
        if row is None:
            raise NotFoundError(f"{self.kind} {entity_id} not found")
        return row

    async def _commit(self) -> None:
        try:
            await self.repo.commit()
        except IntegrityError as exc:
            await self.repo.rollback()
            logger.warning("Integrity error writing %s: %s", self.kind, exc.orig)
            raise ConflictError(f"The {self.kind} record conflicts with an existing one") from exc

    def _reject_required_nulls(self, data: Mapping[str, Any]) -> None:
        columns = self.spec.model.__table__.columns
        nulls = sorted(
            name for name, value in data.items()
            if value is None and name in columns and not columns[name].nullable
        )
        if nulls:
            raise InvalidRequestError(f"Fields cannot be null: {nulls}")

    async def _resolve_location(self, context: IdentityContext, payload: BaseModel) -> Location:
        """(sede_id, subsede_id) a new row will belong to; missing values default to the caller's."""
        if self.spec.sede_field == self.spec.pk_field:
            return None, None
        sede_id = getattr(payload, "sede_id", None) or context.sede_id
        if self.spec.subsede_field == self.spec.pk_field:
            return sede_id, None
        subsede_id = getattr(payload, "subsede_id", None)
        if subsede_id is None and sede_id == context.sede_id:
            subsede_id = context.subsede_id
        return sede_id, subsede_id

    async def _ensure_subsede_of(self, context: IdentityContext, sede_id: Optional[int], subsede_id: int) -> None:
        subsede = await self._lookup(context, "subsedes", subsede_id)
        if subsede is None or subsede.sede_id != sede_id:
            raise InvalidRequestError(f"Subsede {subsede_id} does not belong to sede {sede_id}")

    async def _resolve_references(
        self, context: IdentityContext, data: Mapping[str, Any], sede_id: Optional[int]
    ) -> Dict[str, Any]:
        refs: Dict[str, Any] = {}
        for field, kind in REFERENCES.items():
            ref_id = data.get(field)
            if ref_id is None:
                continue
            spec = get_spec(kind)
            ref = await self._lookup(context, kind, ref_id)
            if ref is not None and not spec.is_catalog and sede_id is not None:
                if getattr(ref, spec.sede_field) != sede_id:
                    ref = None
            if ref is None:
                raise InvalidRequestError(f"{field} {ref_id} does not reference a visible {kind} record of this sede")
            refs[field] = ref
        return refs

    def _owner_columns(self, location: Location) -> Dict[str, Any]:
        sede_id, subsede_id = location
        columns: Dict[str, Any] = {}
        if self.spec.sede_field == "sede_id":
            columns["sede_id"] = sede_id
        if self.spec.subsede_field == "subsede_id":
            columns["subsede_id"] = subsede_id
        return columns

    async def _prepare_create(
        self, context: IdentityContext, data: Dict[str, Any], location: Location, refs: Dict[str, Any]
    ) -> Dict[str, Any]:
        return data

    async def _prepare_update(
        self, context: IdentityContext, row: Any, data: Dict[str, Any], refs: Dict[str, Any]
    ) -> Dict[str, Any]:
        return data

    # PUBLIC_INTERFACE
    async def list(
        self,
        context: IdentityContext,
        filters: Optional[Mapping[str, Any]],
        window: QueryWindow,
    ) -> PaginatedResult:
        """List rows of this kind visible to the caller, filtered and paginated."""
        predicate = build_predicate(self.spec, self._visibility(context), filters)
        return await paginate(
            self.repo,
            predicate,
            self.spec.ordering(),
            page=window.page,
            page_size=window.page_size,
            prefetch_count=window.prefetch,
            activate_paginated=window.activate_paginated,
            transform=self.serialize,
        )

    # PUBLIC_INTERFACE
    async def get(self, context: IdentityContext, entity_id: int) -> Dict[str, Any]:
        return self.serialize(await self._get_visible(context, entity_id))

    # PUBLIC_INTERFACE
    async def create(self, context: IdentityContext, payload: BaseModel) -> Dict[str, Any]:
        """
        Create a row owned by the payload's sede/subsede (the caller's by default).

        Raises:
            ForbiddenError: target sede/subsede outside the caller's scope.
            InvalidRequestError: subsede of another sede, or a foreign key to a
                row the caller cannot see in the target sede.
            ConflictError: unique constraint violated.
        """
        location = await self._resolve_location(context, payload)
        sede_id, subsede_id = location
        if sede_id is not None:
            ensure_in_scope(scope_for(context), sede_id, subsede_id)
        if subsede_id is not None:
            await self._ensure_subsede_of(context, sede_id, subsede_id)

        data = payload.model_dump(exclude={"sede_id", "subsede_id"})
        refs = await self._resolve_references(context, data, sede_id)
        data = await self._prepare_create(context, data, location, refs)

        row = self.spec.model(**data, **self._owner_columns(location), created_by=context.subject_id)
        await self.repo.add(row)
        await self._commit()
        await self.repo.refresh(row)
        logger.info(
            "Created %s id=%s sede=%s subsede=%s by subject=%s",
            self.kind, row.id, sede_id, subsede_id, context.subject_id,
        )
        return self.serialize(row)

    # PUBLIC_INTERFACE
    async def update(self, context: IdentityContext, entity_id: int, payload: BaseModel) -> Dict[str, Any]:
        """
        Apply the fields set in `payload` to a visible row.

        Moving the row to another subsede is checked against the caller's
        scope; the owning sede never changes.
        """
        row = await self._get_visible(context, entity_id)
        data = payload.model_dump(exclude_unset=True)
        self._reject_required_nulls(data)

        sede_id = getattr(row, self.spec.sede_field) if self.spec.sede_field else None
        if "subsede_id" in data and self.spec.subsede_field == "subsede_id":
            ensure_in_scope(scope_for(context), sede_id, data["subsede_id"])
            if data["subsede_id"] is not None:
                await self._ensure_subsede_of(context, sede_id, data["subsede_id"])

        refs = await self._resolve_references(context, data, sede_id)
        data = await self._prepare_update(context, row, data, refs)

        for name, value in data.items():
            setattr(row, name, value)
        await self._commit()
        await self.repo.refresh(row)
        logger.info(
            "Updated %s id=%s fields=%s by subject=%s", self.kind, entity_id, sorted(data), context.subject_id
        )
        return self.serialize(row)

    # PUBLIC_INTERFACE
    async def soft_delete(self, context: IdentityContext, entity_id: int) -> Dict[str, Any]:
        """Stamp the deletion timestamp of a visible row and deactivate it."""
        if self.spec.deleted_field is None:
            raise InvalidRequestError(f"{self.kind} does not support deletion")
        row = await self._get_visible(context, entity_id)
        await self.repo.mark_deleted(row)
        await self.repo.commit()
        logger.info("Soft-deleted %s id=%s by subject=%s", self.kind, entity_id, context.subject_id)
        return self.serialize(row)

    # PUBLIC_INTERFACE
    async def set_active(
        self, context: IdentityContext, entity_id: int, is_active: Optional[bool] = None
    ) -> Dict[str, Any]:
        """Set the active flag of a visible row; `None` toggles it."""
        if self.spec.active_field is None:
            raise InvalidRequestError(f"{self.kind} has no active flag")
        row = await self._get_visible(context, entity_id)
        current = bool(getattr(row, self.spec.active_field))
        target = (not current) if is_active is None else is_active
        await self.repo.set_active(row, target)
        await self.repo.commit()
        logger.info(
            "Set %s id=%s active=%s by subject=%s", self.kind, entity_id, target, context.subject_id
        )
        return self.serialize(row)


class PermisoService(EntityService):
    """
    Citizen permits.

    The folio is `<TYPE NAME>-<year>-<NNNN>`, numbered per type name and year.
    Cost comes from the permit type and the expiry date from the issue date
    plus the validity in days (the type's default when not given).
    """

    async def _next_folio(self, tipo: Any, issued: datetime) -> str:
        prefix = f"{''.join(tipo.nombre.upper().split())}-{issued.year}-"
        # folios are unique across sedes, so the sequence ignores scope
        last = await self.repo.page(StartsWith("folio", prefix), (OrderBy("folio", descending=True),), 0, 1)
        number = 1
        if last:
            tail = last[0].folio[len(prefix):]
            if tail.isdigit():
                number = int(tail) + 1
        return f"{prefix}{number:04d}"

    async def _prepare_create(self, context, data, location, refs):
        tipo = refs["tipo_permiso_id"]
        _, subsede_id = location
        if tipo.subsede_id is not None and tipo.subsede_id != subsede_id:
            raise InvalidRequestError("The permit type is not valid for this subsede")
        if not tipo.is_active:
            raise InvalidRequestError("The permit type is inactive")

        now = _now()
        issued = data.get("fecha_emision") or now
        vigencia = data.get("vigencia_dias") or tipo.vigencia_defecto
        data.update(
            folio=await self._next_folio(tipo, issued),
            costo=tipo.costo_base,
            fecha_emision=issued,
            vigencia_dias=vigencia,
            fecha_vencimiento=issued + timedelta(days=vigencia),
            estatus=PermisoEstatus.SOLICITADO,
            fecha_solicitud=now,
        )
        return data

    async def _prepare_update(self, context, row, data, refs):
        estatus = data.get("estatus")
        if estatus is not None and PermisoEstatus(estatus) != row.estatus:
            estatus = PermisoEstatus(estatus)
            if estatus is PermisoEstatus.APROBADO:
                if row.estatus not in (PermisoEstatus.SOLICITADO, PermisoEstatus.EN_REVISION):
                    raise ConflictError("Only SOLICITADO or EN_REVISION permits can be approved")
                data["fecha_aprobacion"] = _now()
            elif estatus is PermisoEstatus.RECHAZADO:
                if not data.get("motivo_rechazo"):
                    raise InvalidRequestError("motivo_rechazo is required to reject a permit")
                data["fecha_rechazo"] = _now()
        if "fecha_emision" in data or "vigencia_dias" in data:
            issued = data.get("fecha_emision", row.fecha_emision)
            vigencia = data.get("vigencia_dias", row.vigencia_dias)
            data["fecha_vencimiento"] = issued + timedelta(days=vigencia)
        return data

    # PUBLIC_INTERFACE
    async def find_by_documento(
        self,
        context: IdentityContext,
        documento: str,
        pago_id: Optional[int],
        window: QueryWindow,
    ) -> PaginatedResult:
        """Visible permits of one citizen document, optionally only the one a payment belongs to."""
        visibility = self._visibility(context)
        if pago_id is not None:
            pago = await self._lookup(context, "pagos_permisos", pago_id)
            visibility = and_(visibility, Eq("id", pago.permiso_id)) if pago is not None else MATCH_NONE
        return await paginate(
            self.repo,
            build_predicate(self.spec, visibility, {"documento_ciudadano": documento.strip()}),
            self.spec.ordering(),
            page=window.page,
            page_size=window.page_size,
            prefetch_count=window.prefetch,
            activate_paginated=window.activate_paginated,
            transform=self.serialize,
        )


class PagoPermisoService(EntityService):
    """
    Payments of approved permits and their refunds.

    A payment belongs to the sede/subsede of its permit. A permit holds at most
    one active PAGADO payment, and a payment is refunded at most once.
    """

    async def _resolve_location(self, context, payload):
        permiso = await self._lookup(context, "permisos", payload.permiso_id)
        if permiso is None:
            raise NotFoundError(f"permisos {payload.permiso_id} not found")
        return permiso.sede_id, permiso.subsede_id

    async def _active_payment(self, permiso_id: int) -> Optional[Any]:
        return await self.repo.first(
            and_(
                Eq("permiso_id", permiso_id),
                Eq("estatus", PagoEstatus.PAGADO),
                Eq("es_reembolso", False),
                IsNull("deleted_at"),
            )
        )

    async def _prepare_create(self, context, data, location, refs):
        permiso = refs["permiso_id"]
        if PermisoEstatus(permiso.estatus) is not PermisoEstatus.APROBADO:
            raise InvalidRequestError("Only approved permits can be paid")
        if permiso.fecha_vencimiento < _now():
            raise InvalidRequestError("The permit has expired")
        if await self._active_payment(permiso.id) is not None:
            raise InvalidRequestError("The permit already has an active payment")

        costo_base = Decimal(data["costo_base"])
        descuento = Decimal(data["descuento_pct"])
        if descuento > 0 and data.get("autorizado_por") is None:
            raise InvalidRequestError("A discount requires autorizado_por")
        total = (costo_base - costo_base * descuento / 100).quantize(Decimal("0.01"))
        data.update(
            nombre_ciudadano=permiso.nombre_ciudadano,
            documento_ciudadano=permiso.documento_ciudadano,
            total=total,
            estatus=PagoEstatus.PAGADO,
            fecha_pago=_now(),
            usuario_cobro_id=context.subject_id,
            es_reembolso=False,
        )
        return data

    async def _prepare_update(self, context, row, data, refs):
        if data.get("estatus") is not None and PagoEstatus(data["estatus"]) is PagoEstatus.REEMBOLSADO:
            raise InvalidRequestError("Payments are refunded through the refund operation")
        return data

    # PUBLIC_INTERFACE
    async def refund(self, context: IdentityContext, pago_id: int, payload: ReembolsoCreate) -> Dict[str, Any]:
        """
        Refund a visible PAGADO payment.

        Records a negative payment linked to the original, marks the original
        REEMBOLSADO and cancels the permit.
        """
        original = await self._get_visible(context, pago_id)
        if original.es_reembolso or PagoEstatus(original.estatus) is not PagoEstatus.PAGADO:
            raise InvalidRequestError("Only PAGADO payments can be refunded")
        existing = await self.repo.first(
            and_(Eq("pago_original_id", original.id), Eq("es_reembolso", True), IsNull("deleted_at"))
        )
        if existing is not None:
            raise InvalidRequestError(f"Payment {pago_id} was already refunded")
        permiso = await self._lookup(context, "permisos", original.permiso_id)

        refund = PagoPermiso(
            sede_id=original.sede_id,
            subsede_id=original.subsede_id,
            permiso_id=original.permiso_id,
            nombre_ciudadano=original.nombre_ciudadano,
            documento_ciudadano=original.documento_ciudadano,
            costo_base=-Decimal(original.costo_base),
            descuento_pct=original.descuento_pct,
            total=-Decimal(original.total),
            metodo_pago=original.metodo_pago,
            referencia_pago=original.referencia_pago,
            estatus=PagoEstatus.REEMBOLSADO,
            fecha_pago=_now(),
            usuario_cobro_id=context.subject_id,
            autorizado_por=payload.autorizado_por,
            es_reembolso=True,
            pago_original_id=original.id,
            observaciones=f"REEMBOLSO DEL PAGO #{original.id}. {payload.motivo_reembolso}",
            created_by=context.subject_id,
        )
        original.estatus = PagoEstatus.REEMBOLSADO
        if permiso is not None:
            permiso.estatus = PermisoEstatus.CANCELADO
        await self.repo.add(refund)
        await self._commit()
        await self.repo.refresh(refund)
        logger.info(
            "Refunded payment id=%s with id=%s by subject=%s", original.id, refund.id, context.subject_id
        )
        return self.serialize(refund)


_SERVICES: Dict[str, type] = {
    "permisos": PermisoService,
    "pagos_permisos": PagoPermisoService,
}


# PUBLIC_INTERFACE
def service_for(session: AsyncSession, kind: str) -> EntityService:
    """Entity service for `kind`, with the kind-specific rules where there are any."""
    return _SERVICES.get(kind, EntityService)(session, kind)
