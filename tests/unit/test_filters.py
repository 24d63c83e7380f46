"""Unit tests for the scoped query filter builder.

Tests cover:
- Visibility is always the first conjunct
- Soft-deleted rows are hidden unless requested
- Exact, search and date-range filters only narrow results
- Unknown keys and None values are ignored
"""

from datetime import datetime, timezone

import pytest

from municipal_api.core.identity import AccessLevel
from municipal_api.repositories.filters import (
    DATE_FROM_KEY,
    DATE_TO_KEY,
    ENTITY_SPECS,
    INCLUDE_DELETED_KEY,
    SEARCH_KEY,
    build,
    build_predicate,
    get_spec,
)
from municipal_api.repositories.predicates import MATCH_NONE, IsNull, OrderBy
from municipal_api.services.policy import CATALOG_KINDS, SCOPED_ENTITY_KINDS
from municipal_api.services.scope import resolve_scope
from tests.conftest import NOW, make_row

SCOPE = resolve_scope(AccessLevel.SEDE, 1, None)

ROWS = [
    make_row(1, sede_id=1, nombre_ciudadano="Ana López", folio="F-001", estatus="APROBADO",
             fecha_emision=datetime(2024, 1, 10, tzinfo=timezone.utc)),
    make_row(2, sede_id=1, nombre_ciudadano="Luis Pérez", folio="F-002", estatus="SOLICITADO",
             fecha_emision=datetime(2024, 2, 10, tzinfo=timezone.utc)),
    make_row(3, sede_id=2, nombre_ciudadano="Ana Ruiz", folio="F-003", estatus="APROBADO",
             fecha_emision=datetime(2024, 1, 12, tzinfo=timezone.utc)),
    make_row(4, sede_id=1, nombre_ciudadano="Ana Mora", folio="F-004", estatus="APROBADO",
             fecha_emision=datetime(2024, 1, 15, tzinfo=timezone.utc), deleted_at=NOW),
]


def _ids(predicate):
    return [r["id"] for r in ROWS if predicate.matches(r)]


@pytest.mark.unit
class TestBuild:
    def test_visibility_is_first_and_deleted_hidden(self):
        predicate = build("permisos", SCOPE, {})

        assert predicate.items[0] == SCOPE.to_predicate(get_spec("permisos"))
        assert IsNull("deleted_at") in predicate.items
        assert _ids(predicate) == [1, 2]

    def test_include_deleted(self):
        assert _ids(build("permisos", SCOPE, {INCLUDE_DELETED_KEY: True})) == [1, 2, 4]

    def test_exact_filter(self):
        assert _ids(build("permisos", SCOPE, {"estatus": "APROBADO"})) == [1]

    def test_search_over_searchable_fields(self):
        assert _ids(build("permisos", SCOPE, {SEARCH_KEY: "  ana "})) == [1]
        assert _ids(build("permisos", SCOPE, {SEARCH_KEY: "f-002"})) == [2]

    def test_blank_search_is_ignored(self):
        assert _ids(build("permisos", SCOPE, {SEARCH_KEY: "   "})) == [1, 2]

    def test_date_range(self):
        filters = {
            DATE_FROM_KEY: datetime(2024, 1, 1, tzinfo=timezone.utc),
            DATE_TO_KEY: datetime(2024, 1, 31, tzinfo=timezone.utc),
        }

        assert _ids(build("permisos", SCOPE, filters)) == [1]

    def test_filters_cannot_widen_scope(self):
        # sede_id=2 is outside the scope; the exact filter only narrows
        assert _ids(build("permisos", SCOPE, {"sede_id": 2})) == []

    def test_unknown_keys_and_none_values_are_ignored(self):
        assert _ids(build("permisos", SCOPE, {"bogus": 1, "estatus": None})) == [1, 2]

    def test_empty_scope_matches_nothing(self):
        empty = resolve_scope(AccessLevel.SUBSEDE, 1, None)

        assert build("permisos", empty, {"estatus": "APROBADO"}) is MATCH_NONE

    def test_kind_without_deleted_column(self):
        predicate = build_predicate(get_spec("roles"), SCOPE.to_predicate(get_spec("roles")), {})

        assert IsNull("deleted_at") not in getattr(predicate, "items", (predicate,))


@pytest.mark.unit
class TestSpecs:
    def test_every_routed_kind_has_a_spec(self):
        for kind in SCOPED_ENTITY_KINDS + CATALOG_KINDS:
            assert kind in ENTITY_SPECS

    def test_ordering_ends_with_primary_key(self):
        for spec in ENTITY_SPECS.values():
            assert spec.ordering()[-1].field == spec.pk_field

    def test_ordering_parses_descending_terms(self):
        assert get_spec("patrullas").ordering() == (OrderBy("created_at", descending=True), OrderBy("id"))

    def test_unknown_kind(self):
        with pytest.raises(KeyError):
            get_spec("unicorns")
