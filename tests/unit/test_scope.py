"""Unit tests for tenant scope resolution.

Tests cover:
- Resolution per access level
- Super-admin precedence
- Monotonicity: adding grants never shrinks visibility
- Mapping the scope onto entity specs
- Write-target checks
"""

import pytest

from municipal_api.core.errors import ForbiddenError
from municipal_api.core.identity import AccessLevel, RoleLevel
from municipal_api.repositories.filters import get_spec
from municipal_api.repositories.predicates import MATCH_ALL, MATCH_NONE, In
from municipal_api.services.scope import (
    ScopeKind,
    ensure_in_scope,
    resolve_scope,
    scope_for,
)
from tests.conftest import build_identity, make_row


@pytest.mark.unit
class TestResolveScope:
    def test_super_admin_is_unrestricted_at_any_access_level(self):
        scope = resolve_scope(AccessLevel.OPERATIVO, 1, 7, is_super_admin=True)

        assert scope.is_unrestricted

    def test_tenant_access_is_unrestricted(self):
        assert resolve_scope(AccessLevel.TENANT, 1, None).is_unrestricted

    def test_sede_access_includes_own_sede_and_grants(self):
        scope = resolve_scope(AccessLevel.SEDE, 3, None, sede_grants=[5, 1, 5])

        assert scope.kind is ScopeKind.SEDE
        assert scope.ids == (1, 3, 5)

    @pytest.mark.parametrize("access", [AccessLevel.SUBSEDE, AccessLevel.OPERATIVO])
    def test_subsede_bound_access_uses_subsedes(self, access):
        scope = resolve_scope(access, 1, 7, subsede_grants=[9])

        assert scope.kind is ScopeKind.SUBSEDE
        assert scope.ids == (7, 9)

    def test_subsede_access_ignores_sede_grants(self):
        scope = resolve_scope(AccessLevel.SUBSEDE, 1, 7, sede_grants=[2])

        assert scope.ids == (7,)

    def test_no_subsede_and_no_grants_sees_nothing(self):
        scope = resolve_scope(AccessLevel.SUBSEDE, 1, None)

        assert scope.kind is ScopeKind.NONE
        assert scope.to_predicate(get_spec("agentes")) is MATCH_NONE

    def test_scope_for_reads_identity(self):
        ctx = build_identity(AccessLevel.SUBSEDE, subsede_id=7, subsede_grants=[9])

        assert scope_for(ctx).ids == (7, 9)


@pytest.mark.unit
class TestMonotonicity:
    ROWS = [make_row(i, sede_id=1 + i % 3, subsede_id=10 + i % 5) for i in range(1, 31)]

    @pytest.mark.parametrize(
        "access, own_subsede, extra",
        [
            (AccessLevel.SEDE, None, {"sede_grants": [2]}),
            (AccessLevel.SEDE, None, {"sede_grants": [2, 3]}),
            (AccessLevel.SUBSEDE, 10, {"subsede_grants": [11]}),
            (AccessLevel.OPERATIVO, 12, {"subsede_grants": [13, 14]}),
        ],
    )
    def test_grants_only_widen_visible_rows(self, access, own_subsede, extra):
        spec = get_spec("agentes")
        base = resolve_scope(access, 1, own_subsede).to_predicate(spec)
        widened = resolve_scope(access, 1, own_subsede, **extra).to_predicate(spec)

        before = {r["id"] for r in self.ROWS if base.matches(r)}
        after = {r["id"] for r in self.ROWS if widened.matches(r)}

        assert before <= after
        assert len(after) > len(before)


@pytest.mark.unit
class TestToPredicate:
    def test_sede_scope_maps_to_entity_sede_column(self):
        scope = resolve_scope(AccessLevel.SEDE, 4, None)

        assert scope.to_predicate(get_spec("agentes")) == In("sede_id", (4,))

    def test_sede_scope_on_sedes_uses_primary_key(self):
        scope = resolve_scope(AccessLevel.SEDE, 4, None)

        assert scope.to_predicate(get_spec("sedes")) == In("id", (4,))

    def test_subsede_scope_on_entity_without_subsede_column_matches_nothing(self):
        scope = resolve_scope(AccessLevel.SUBSEDE, 1, 7)

        assert scope.to_predicate(get_spec("sedes")) is MATCH_NONE

    def test_catalogue_is_visible_to_everyone(self):
        scope = resolve_scope(AccessLevel.OPERATIVO, 1, 7)

        assert scope.to_predicate(get_spec("themes")) is MATCH_ALL

    def test_super_admin_sees_rows_without_tenant_ids(self):
        ctx = build_identity(AccessLevel.TENANT, RoleLevel.SUPER_ADMIN)
        predicate = scope_for(ctx).to_predicate(get_spec("agentes"))

        assert predicate.matches(make_row(1, sede_id=None, subsede_id=None))


@pytest.mark.unit
class TestEnsureInScope:
    def test_inside_sede_scope(self):
        ensure_in_scope(resolve_scope(AccessLevel.SEDE, 1, None, sede_grants=[2]), 2, None)

    def test_outside_sede_scope(self):
        with pytest.raises(ForbiddenError):
            ensure_in_scope(resolve_scope(AccessLevel.SEDE, 1, None), 2, None)

    def test_subsede_scope_requires_subsede_target(self):
        scope = resolve_scope(AccessLevel.SUBSEDE, 1, 7)

        with pytest.raises(ForbiddenError):
            ensure_in_scope(scope, 1, None)
        ensure_in_scope(scope, 1, 7)
