"""
Scoped query filter builder.

Each entity kind exposed through the scoped query engine is described once by
an EntitySpec: which columns carry the sede/subsede identifiers, which caller
filter keys map to exact-match columns, which text columns free-text search may
touch, which timestamp column date ranges apply to, and the default ordering.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from municipal_api.db.models import (
    Agente,
    Configuracion,
    Departamento,
    Multa,
    PagoPermiso,
    Patrulla,
    Permission,
    Permiso,
    Role,
    Sede,
    Subsede,
    Theme,
    TipoAgente,
    TipoPermiso,
    User,
)
from municipal_api.repositories.predicates import (
    Contains,
    Eq,
    IsNull,
    OrderBy,
    Predicate,
    Range,
    and_,
    or_,
)

if TYPE_CHECKING:
    from municipal_api.services.scope import ScopePredicate

SEARCH_KEY = "search"
DATE_FROM_KEY = "date_from"
DATE_TO_KEY = "date_to"
INCLUDE_DELETED_KEY = "include_deleted"


@dataclass(frozen=True)
class EntitySpec:
    """Static description of how an entity kind is scoped, filtered and ordered."""

    kind: str
    model: Any
    sede_field: Optional[str] = "sede_id"
    subsede_field: Optional[str] = "subsede_id"
    exact_filters: Mapping[str, str] = field(default_factory=dict)
    search_fields: Tuple[str, ...] = ()
    date_field: Optional[str] = None
    deleted_field: Optional[str] = "deleted_at"
    active_field: Optional[str] = "is_active"
    default_order: Tuple[str, ...] = ()
    is_catalog: bool = False
    pk_field: str = "id"

    # PUBLIC_INTERFACE
    def ordering(self) -> Tuple[OrderBy, ...]:
        """Default ordering with the primary key appended as a stable tie-breaker."""
        terms = [OrderBy.parse(t) for t in self.default_order]
        if not any(t.field == self.pk_field for t in terms):
            terms.append(OrderBy(self.pk_field))
        return tuple(terms)


def _spec(kind: str, model: Any, **kwargs: Any) -> EntitySpec:
    return EntitySpec(kind=kind, model=model, **kwargs)


_SCOPE_FILTERS = {"sede_id": "sede_id", "subsede_id": "subsede_id", "is_active": "is_active"}

ENTITY_SPECS: Dict[str, EntitySpec] = {
    spec.kind: spec
    for spec in (
        _spec(
            "sedes",
            Sede,
            sede_field="id",
            subsede_field=None,
            exact_filters={"is_active": "is_active"},
            search_fields=("name", "code", "city"),
            default_order=("name",),
        ),
        _spec(
            "subsedes",
            Subsede,
            sede_field="sede_id",
            subsede_field="id",
            exact_filters={"sede_id": "sede_id", "is_active": "is_active"},
            search_fields=("name", "code", "municipality_code"),
            default_order=("name",),
        ),
        _spec(
            "users",
            User,
            exact_filters={**_SCOPE_FILTERS, "access_level": "access_level"},
            search_fields=("first_name", "last_name", "email", "username", "document_number"),
            default_order=("-is_active", "last_name", "first_name"),
        ),
        _spec(
            "roles",
            Role,
            exact_filters={"level": "level", "is_active": "is_active"},
            search_fields=("name", "description"),
            deleted_field=None,
            default_order=("-created_at",),
        ),
        _spec(
            "permissions",
            Permission,
            sede_field=None,
            subsede_field=None,
            exact_filters={"resource": "resource", "action": "action", "is_active": "is_active"},
            search_fields=("resource", "action", "description"),
            deleted_field=None,
            default_order=("resource", "action"),
            is_catalog=True,
        ),
        _spec(
            "themes",
            Theme,
            sede_field=None,
            subsede_field=None,
            exact_filters={"dark_mode": "dark_mode", "is_default": "is_default"},
            search_fields=("name", "description"),
            deleted_field=None,
            active_field=None,
            default_order=("-is_default", "name"),
            is_catalog=True,
        ),
        _spec(
            "configuraciones",
            Configuracion,
            exact_filters={**_SCOPE_FILTERS, "theme_id": "theme_id"},
            search_fields=("nombre_cliente", "ciudad", "titular"),
            default_order=("nombre_cliente",),
        ),
        _spec(
            "tipos_agente",
            TipoAgente,
            exact_filters=dict(_SCOPE_FILTERS),
            search_fields=("tipo",),
            default_order=("tipo",),
        ),
        _spec(
            "departamentos",
            Departamento,
            exact_filters=dict(_SCOPE_FILTERS),
            search_fields=("nombre", "descripcion"),
            default_order=("nombre",),
        ),
        _spec(
            "agentes",
            Agente,
            exact_filters={
                **_SCOPE_FILTERS,
                "tipo_id": "tipo_id",
                "departamento_id": "departamento_id",
            },
            search_fields=("nombres", "apellido_paterno", "apellido_materno", "num_plantilla"),
            default_order=("apellido_paterno", "nombres"),
        ),
        _spec(
            "patrullas",
            Patrulla,
            exact_filters={**_SCOPE_FILTERS, "agente_id": "agente_id"},
            search_fields=("marca", "modelo", "placa", "num_patrulla", "serie"),
            default_order=("-created_at",),
        ),
        _spec(
            "multas",
            Multa,
            exact_filters={**_SCOPE_FILTERS, "departamento_id": "departamento_id"},
            search_fields=("nombre", "codigo", "descripcion"),
            default_order=("nombre",),
        ),
        _spec(
            "tipos_permiso",
            TipoPermiso,
            exact_filters=dict(_SCOPE_FILTERS),
            search_fields=("nombre", "descripcion"),
            default_order=("nombre",),
        ),
        _spec(
            "permisos",
            Permiso,
            exact_filters={
                **_SCOPE_FILTERS,
                "tipo_permiso_id": "tipo_permiso_id",
                "estatus": "estatus",
                "documento_ciudadano": "documento_ciudadano",
            },
            search_fields=("nombre_ciudadano", "folio", "documento_ciudadano"),
            date_field="fecha_emision",
            default_order=("-fecha_solicitud",),
        ),
        _spec(
            "pagos_permisos",
            PagoPermiso,
            exact_filters={
                **_SCOPE_FILTERS,
                "permiso_id": "permiso_id",
                "metodo_pago": "metodo_pago",
                "estatus": "estatus",
                "usuario_cobro_id": "usuario_cobro_id",
                "es_reembolso": "es_reembolso",
            },
            search_fields=("nombre_ciudadano", "documento_ciudadano"),
            date_field="fecha_pago",
            default_order=("-fecha_pago",),
        ),
    )
}


# PUBLIC_INTERFACE
def get_spec(kind: str) -> EntitySpec:
    """Return the EntitySpec registered for `kind`; KeyError if unknown."""
    return ENTITY_SPECS[kind]


def _search_predicate(spec: EntitySpec, raw: Any) -> Optional[Predicate]:
    if not isinstance(raw, str):
        return None
    term = raw.strip()
    if not term or not spec.search_fields:
        return None
    return or_(*(Contains(f, term) for f in spec.search_fields))


def _range_predicate(spec: EntitySpec, filters: Mapping[str, Any]) -> Optional[Predicate]:
    if spec.date_field is None:
        return None
    gte = filters.get(DATE_FROM_KEY)
    lte = filters.get(DATE_TO_KEY)
    if gte is None and lte is None:
        return None
    return Range(spec.date_field, gte=gte, lte=lte)


# PUBLIC_INTERFACE
def build_predicate(spec: EntitySpec, visibility: Predicate, filters: Optional[Mapping[str, Any]] = None) -> Predicate:
    """
    Combine a visibility predicate with caller filters for one entity kind.

    The visibility predicate is always the first conjunct; every caller filter
    is AND-ed after it, so filters can only narrow the visible set. Keys the
    spec does not know and None values are ignored.
    """
    filters = filters or {}
    parts = [visibility]

    if spec.deleted_field and not filters.get(INCLUDE_DELETED_KEY):
        parts.append(IsNull(spec.deleted_field))

    for key, column in spec.exact_filters.items():
        value = filters.get(key)
        if value is not None:
            parts.append(Eq(column, value))

    search = _search_predicate(spec, filters.get(SEARCH_KEY))
    if search is not None:
        parts.append(search)

    date_range = _range_predicate(spec, filters)
    if date_range is not None:
        parts.append(date_range)

    return and_(*parts)


# PUBLIC_INTERFACE
def build(entity_kind: str, scope: "ScopePredicate", filters: Optional[Mapping[str, Any]] = None) -> Predicate:
    """
    Build the query predicate for `entity_kind` under the caller's scope.

    Parameters:
        entity_kind: key into ENTITY_SPECS
        scope: resolved ScopePredicate of the caller
        filters: caller-supplied filters (exact keys, "search", "date_from",
                 "date_to", "include_deleted"); unknown keys are ignored
    Returns:
        Predicate ready for the persistence collaborator.
    """
    spec = get_spec(entity_kind)
    return build_predicate(spec, scope.to_predicate(spec), filters)
