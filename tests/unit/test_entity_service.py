"""Unit tests for EntityService.

Tests cover:
- Out-of-scope and soft-deleted rows are reported as not found
- Listing serializes rows through the read schema
- Soft delete and active toggling
- Kinds without deletion or active flag
- Create/update: owner defaults, scope checks on the target, foreign keys
  limited to visible rows of the same sede
- Permit folio/cost/expiry derivation and status rules
- Payment rules, refunds and the citizen-document lookup

Architecture:
- One InMemoryPersistence per entity kind, handed out by a repository factory
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from municipal_api.core.errors import ConflictError, ForbiddenError, InvalidRequestError, NotFoundError
from municipal_api.core.identity import AccessLevel
from municipal_api.db.models import MetodoPago, PagoEstatus, PermisoEstatus
from municipal_api.repositories.filters import get_spec
from municipal_api.repositories.pagination import QueryWindow
from municipal_api.schemas.entities import (
    AgenteCreate,
    DepartamentoCreate,
    DepartamentoUpdate,
    PagoPermisoCreate,
    PagoPermisoUpdate,
    PermisoCreate,
    PermisoUpdate,
    ReembolsoCreate,
)
from municipal_api.services.entities import EntityService, PagoPermisoService, PermisoService
from tests.conftest import NOW, InMemoryPersistence, build_identity, make_row


def _departamentos():
    return [
        make_row(1, sede_id=1, subsede_id=7, nombre="Tránsito"),
        make_row(2, sede_id=1, subsede_id=9, nombre="Catastro"),
        make_row(3, sede_id=2, subsede_id=20, nombre="Obras"),
        make_row(4, sede_id=1, subsede_id=7, nombre="Archivo", deleted_at=NOW, is_active=False),
    ]


def _service(kind="departamentos", rows=None):
    store = InMemoryPersistence(_departamentos() if rows is None else rows, spec=get_spec(kind))
    return EntityService(None, kind, repository=store), store


def _municipal():
    return build_identity(AccessLevel.SUBSEDE, sede_id=1, subsede_id=7)


@pytest.mark.unit
class TestReads:
    async def test_get_in_scope(self):
        service, _ = _service()

        body = await service.get(_municipal(), 1)

        assert body["nombre"] == "Tránsito"
        assert body["created_at"] == "2024-01-15T12:00:00Z"

    @pytest.mark.parametrize("entity_id", [2, 3, 4, 999])
    async def test_out_of_scope_deleted_or_missing_is_not_found(self, entity_id):
        service, _ = _service()

        with pytest.raises(NotFoundError):
            await service.get(_municipal(), entity_id)

    async def test_list_orders_and_serializes(self):
        service, _ = _service()
        ctx = build_identity(AccessLevel.SEDE, sede_id=1)

        result = await service.list(ctx, {}, QueryWindow())

        assert [i["nombre"] for i in result.items] == ["Catastro", "Tránsito"]
        assert result.pagination.total_items == 2


@pytest.mark.unit
class TestWrites:
    async def test_soft_delete(self):
        service, store = _service()

        body = await service.soft_delete(_municipal(), 1)

        assert body["is_active"] is False
        assert body["deleted_at"] is not None
        assert store.commits == 1
        with pytest.raises(NotFoundError):
            await service.get(_municipal(), 1)

    async def test_toggle_and_explicit_set(self):
        service, store = _service()

        assert (await service.set_active(_municipal(), 1))["is_active"] is False
        assert (await service.set_active(_municipal(), 1))["is_active"] is True
        assert (await service.set_active(_municipal(), 1, is_active=True))["is_active"] is True
        assert store.commits == 3

    async def test_cannot_touch_rows_outside_scope(self):
        service, store = _service()

        with pytest.raises(NotFoundError):
            await service.set_active(_municipal(), 3)

        assert store.commits == 0

    async def test_kind_without_deletion(self):
        service, store = _service("permissions", rows=[])

        with pytest.raises(InvalidRequestError):
            await service.soft_delete(_municipal(), 1)

    async def test_kind_without_active_flag(self):
        service, store = _service("themes", rows=[])

        with pytest.raises(InvalidRequestError):
            await service.set_active(_municipal(), 1)


def _subsedes():
    return [
        make_row(7, sede_id=1, name="Centro", code="CEN"),
        make_row(9, sede_id=1, name="Norte", code="NOR"),
        make_row(20, sede_id=2, name="Sur", code="SUR"),
    ]


def _writer(kind="departamentos", service_class=EntityService, **rows_by_kind):
    rows_by_kind.setdefault("departamentos", _departamentos())
    rows_by_kind.setdefault("subsedes", _subsedes())
    stores = {k: InMemoryPersistence(rows, spec=get_spec(k)) for k, rows in rows_by_kind.items()}

    def repositories(spec):
        return stores.setdefault(spec.kind, InMemoryPersistence([], spec=spec))

    return service_class(None, kind, repositories=repositories), stores


def _estatal(**kwargs):
    return build_identity(AccessLevel.SEDE, sede_id=1, **kwargs)


@pytest.mark.unit
class TestCreate:
    async def test_defaults_to_callers_sede_and_subsede(self):
        service, stores = _writer()

        body = await service.create(_municipal(), DepartamentoCreate(nombre="Bomberos"))

        assert body["nombre"] == "Bomberos"
        assert (body["sede_id"], body["subsede_id"]) == (1, 7)
        assert body["is_active"] is True
        assert body["id"] == 5
        assert stores["departamentos"].added[0].created_by == 100
        assert stores["departamentos"].commits == 1

    async def test_target_outside_scope_is_forbidden(self):
        service, stores = _writer()

        with pytest.raises(ForbiddenError):
            await service.create(_municipal(), DepartamentoCreate(nombre="Bomberos", subsede_id=9))

        assert stores["departamentos"].added == []
        assert stores["departamentos"].commits == 0

    async def test_other_sede_needs_a_grant(self):
        service, stores = _writer()
        payload = DepartamentoCreate(nombre="Bomberos", sede_id=2, subsede_id=20)

        with pytest.raises(ForbiddenError):
            await service.create(_estatal(), payload)

        body = await service.create(_estatal(sede_grants=[2]), payload)
        assert (body["sede_id"], body["subsede_id"]) == (2, 20)

    async def test_subsede_must_belong_to_target_sede(self):
        service, stores = _writer()

        with pytest.raises(InvalidRequestError, match="does not belong"):
            await service.create(
                _estatal(sede_grants=[2]), DepartamentoCreate(nombre="Bomberos", sede_id=1, subsede_id=20)
            )

        assert stores["departamentos"].commits == 0

    async def test_references_must_be_visible_in_the_same_sede(self):
        tipos = [make_row(5, sede_id=1, subsede_id=7, tipo="Policía")]
        service, stores = _writer("agentes", tipos_agente=tipos)
        payload = AgenteCreate(
            nombres="Luis", apellido_paterno="Mora", tipo_id=5, num_plantilla="P-01", departamento_id=3
        )

        with pytest.raises(InvalidRequestError, match="departamento_id 3"):
            await service.create(_estatal(sede_grants=[2]), payload)

        body = await service.create(_estatal(), payload.model_copy(update={"departamento_id": 1}))
        assert (body["tipo_id"], body["departamento_id"]) == (5, 1)

    async def test_unique_violation_is_a_conflict(self):
        service, stores = _writer()
        store = stores["departamentos"]
        store.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

        with pytest.raises(ConflictError):
            await service.create(_municipal(), DepartamentoCreate(nombre="Tránsito"))

        assert store.rollbacks == 1


@pytest.mark.unit
class TestUpdate:
    async def test_applies_only_the_fields_sent(self):
        service, stores = _writer()

        body = await service.update(_municipal(), 1, DepartamentoUpdate(descripcion="Vialidad"))

        assert body["nombre"] == "Tránsito"
        assert body["descripcion"] == "Vialidad"
        assert stores["departamentos"].commits == 1

    @pytest.mark.parametrize("entity_id", [2, 3, 4])
    async def test_rows_outside_scope_are_not_found(self, entity_id):
        service, stores = _writer()

        with pytest.raises(NotFoundError):
            await service.update(_municipal(), entity_id, DepartamentoUpdate(nombre="Otro"))

        assert stores["departamentos"].commits == 0

    async def test_move_outside_scope_is_forbidden(self):
        service, stores = _writer()

        with pytest.raises(ForbiddenError):
            await service.update(_municipal(), 1, DepartamentoUpdate(subsede_id=9))

        assert stores["departamentos"].rows[0]["subsede_id"] == 7

    async def test_move_within_the_sede(self):
        service, _ = _writer()

        body = await service.update(_estatal(), 1, DepartamentoUpdate(subsede_id=9))

        assert body["subsede_id"] == 9

    async def test_required_column_cannot_be_cleared(self):
        service, stores = _writer()

        with pytest.raises(InvalidRequestError, match="nombre"):
            await service.update(_municipal(), 1, DepartamentoUpdate(nombre=None))

        assert stores["departamentos"].commits == 0


def _tipo_permiso(row_id=11, subsede_id=7, **fields):
    return make_row(
        row_id,
        sede_id=1,
        subsede_id=subsede_id,
        nombre="Evento Publico",
        costo_base=Decimal("450.00"),
        vigencia_defecto=30,
        **fields,
    )


def _permiso(row_id, **fields):
    data = dict(
        sede_id=1,
        subsede_id=7,
        tipo_permiso_id=11,
        folio=f"EVENTOPUBLICO-2024-{row_id:04d}",
        nombre_ciudadano="Ana Ruiz",
        documento_ciudadano="RUAA800101",
        costo=Decimal("450.00"),
        fecha_emision=NOW,
        fecha_vencimiento=datetime.now(timezone.utc) + timedelta(days=10),
        vigencia_dias=30,
        estatus=PermisoEstatus.APROBADO,
        fecha_solicitud=NOW,
    )
    data.update(fields)
    return make_row(row_id, **data)


def _pago(row_id, **fields):
    data = dict(
        sede_id=1,
        subsede_id=7,
        permiso_id=40,
        nombre_ciudadano="Ana Ruiz",
        documento_ciudadano="RUAA800101",
        costo_base=Decimal("500.00"),
        descuento_pct=Decimal("10.00"),
        total=Decimal("450.00"),
        metodo_pago=MetodoPago.TARJETA,
        referencia_pago="REF-1",
        estatus=PagoEstatus.PAGADO,
        fecha_pago=NOW,
        usuario_cobro_id=100,
        autorizado_por=5,
        es_reembolso=False,
        pago_original_id=None,
    )
    data.update(fields)
    return make_row(row_id, **data)


def _permits(permisos=(), tipos=None):
    return _writer(
        "permisos",
        PermisoService,
        permisos=list(permisos),
        tipos_permiso=[_tipo_permiso()] if tipos is None else tipos,
    )


def _payments(pagos=(), permisos=None):
    return _writer(
        "pagos_permisos",
        PagoPermisoService,
        pagos_permisos=list(pagos),
        permisos=[_permiso(40)] if permisos is None else permisos,
    )


def _solicitud(**overrides):
    data = dict(
        tipo_permiso_id=11,
        nombre_ciudadano="Ana Ruiz",
        documento_ciudadano="RUAA800101",
        fecha_emision=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return PermisoCreate(**data)


def _cobro(**overrides):
    data = dict(permiso_id=40, costo_base=Decimal("500"), metodo_pago=MetodoPago.EFECTIVO)
    data.update(overrides)
    return PagoPermisoCreate(**data)


@pytest.mark.unit
class TestPermits:
    async def test_folio_cost_and_expiry_come_from_the_type(self):
        service, stores = _permits(permisos=[_permiso(7), _permiso(30, folio="OTRO-2024-0099")])

        body = await service.create(_municipal(), _solicitud())

        assert body["folio"] == "EVENTOPUBLICO-2024-0008"
        assert body["costo"] == "450.00"
        assert body["vigencia_dias"] == 30
        assert body["fecha_vencimiento"] == "2024-05-31T00:00:00Z"
        assert body["estatus"] == "SOLICITADO"
        assert (body["sede_id"], body["subsede_id"]) == (1, 7)

    async def test_first_folio_of_the_year_and_explicit_validity(self):
        service, _ = _permits()

        body = await service.create(_municipal(), _solicitud(vigencia_dias=10))

        assert body["folio"] == "EVENTOPUBLICO-2024-0001"
        assert body["fecha_vencimiento"] == "2024-05-11T00:00:00Z"

    async def test_type_of_another_subsede_is_rejected(self):
        service, stores = _permits(tipos=[_tipo_permiso(subsede_id=9)])

        with pytest.raises(InvalidRequestError, match="not valid for this subsede"):
            await service.create(_estatal(), _solicitud(subsede_id=7))

        assert stores["permisos"].commits == 0

    async def test_rejection_requires_a_reason(self):
        service, stores = _permits(permisos=[_permiso(7, estatus=PermisoEstatus.EN_REVISION)])

        with pytest.raises(InvalidRequestError, match="motivo_rechazo"):
            await service.update(_municipal(), 7, PermisoUpdate(estatus=PermisoEstatus.RECHAZADO))

        body = await service.update(
            _municipal(), 7, PermisoUpdate(estatus=PermisoEstatus.RECHAZADO, motivo_rechazo="Incompleto")
        )
        assert body["estatus"] == "RECHAZADO"
        assert body["fecha_rechazo"] is not None

    async def test_only_pending_permits_can_be_approved(self):
        service, _ = _permits(permisos=[_permiso(7, estatus=PermisoEstatus.RECHAZADO)])

        with pytest.raises(ConflictError):
            await service.update(_municipal(), 7, PermisoUpdate(estatus=PermisoEstatus.APROBADO))

    async def test_find_by_documento(self):
        permisos = [
            _permiso(1),
            _permiso(2),
            _permiso(3, documento_ciudadano="OTRO000000"),
            _permiso(4, subsede_id=9),
        ]
        service, stores = _permits(permisos=permisos)
        stores["pagos_permisos"] = InMemoryPersistence([_pago(60, permiso_id=2)], spec=get_spec("pagos_permisos"))

        everything = await service.find_by_documento(_municipal(), " RUAA800101 ", None, QueryWindow())
        paid = await service.find_by_documento(_municipal(), "RUAA800101", 60, QueryWindow())
        unknown = await service.find_by_documento(_municipal(), "RUAA800101", 999, QueryWindow())

        assert sorted(i["id"] for i in everything.items) == [1, 2]
        assert [i["id"] for i in paid.items] == [2]
        assert unknown.items == []


@pytest.mark.unit
class TestPayments:
    async def test_discounted_payment(self):
        service, stores = _payments()

        body = await service.create(_municipal(), _cobro(descuento_pct=Decimal("10"), autorizado_por=5))

        assert body["total"] == "450.00"
        assert (body["sede_id"], body["subsede_id"]) == (1, 7)
        assert body["nombre_ciudadano"] == "Ana Ruiz"
        assert body["usuario_cobro_id"] == 100
        assert body["estatus"] == "PAGADO"
        assert stores["pagos_permisos"].commits == 1

    async def test_discount_needs_an_authorizer(self):
        service, stores = _payments()

        with pytest.raises(InvalidRequestError, match="autorizado_por"):
            await service.create(_municipal(), _cobro(descuento_pct=Decimal("5")))

        assert stores["pagos_permisos"].added == []

    async def test_unknown_permit_is_not_found(self):
        service, _ = _payments(permisos=[])

        with pytest.raises(NotFoundError):
            await service.create(_municipal(), _cobro())

    @pytest.mark.parametrize(
        "permiso",
        [
            _permiso(40, estatus=PermisoEstatus.SOLICITADO),
            _permiso(40, fecha_vencimiento=datetime(2020, 1, 1, tzinfo=timezone.utc)),
        ],
    )
    async def test_permit_must_be_approved_and_current(self, permiso):
        service, stores = _payments(permisos=[permiso])

        with pytest.raises(InvalidRequestError):
            await service.create(_municipal(), _cobro())

        assert stores["pagos_permisos"].commits == 0

    async def test_one_active_payment_per_permit(self):
        service, _ = _payments(pagos=[_pago(60)])

        with pytest.raises(InvalidRequestError, match="already has an active payment"):
            await service.create(_municipal(), _cobro())

    async def test_refund(self):
        service, stores = _payments(pagos=[_pago(60)])

        body = await service.refund(
            _municipal(), 60, ReembolsoCreate(motivo_reembolso="Evento cancelado", autorizado_por=5)
        )

        assert body["es_reembolso"] is True
        assert body["total"] == "-450.00"
        assert body["estatus"] == "REEMBOLSADO"
        assert body["pago_original_id"] == 60
        assert body["observaciones"] == "REEMBOLSO DEL PAGO #60. Evento cancelado"
        assert stores["pagos_permisos"].rows[0]["estatus"] is PagoEstatus.REEMBOLSADO
        assert stores["permisos"].rows[0]["estatus"] is PermisoEstatus.CANCELADO

        with pytest.raises(InvalidRequestError):
            await service.refund(
                _municipal(), 60, ReembolsoCreate(motivo_reembolso="Otra vez", autorizado_por=5)
            )

    async def test_refund_outside_scope_is_not_found(self):
        service, stores = _payments(pagos=[_pago(60, subsede_id=9)])

        with pytest.raises(NotFoundError):
            await service.refund(_municipal(), 60, ReembolsoCreate(motivo_reembolso="Error", autorizado_por=5))

        assert stores["pagos_permisos"].commits == 0

    async def test_refunded_status_is_not_set_by_update(self):
        service, _ = _payments(pagos=[_pago(60)])

        with pytest.raises(InvalidRequestError, match="refund operation"):
            await service.update(_municipal(), 60, PagoPermisoUpdate(estatus=PagoEstatus.REEMBOLSADO))
