"""Unit tests for the policy table and evaluator.

Tests cover:
- Conjunctive requirements (every requirement must hold)
- Super-admin bypass of permission requirements
- Super-only requirements
- Declared operations and the derived permission catalogue
"""

import pytest

from municipal_api.core.deps import require_operation
from municipal_api.core.errors import ForbiddenError
from municipal_api.core.identity import AccessLevel, RoleLevel
from municipal_api.services.policy import (
    POLICY_TABLE,
    PolicyRequirement,
    all_permissions,
    authorize,
    evaluate,
    requirements_for,
)
from tests.conftest import build_identity


@pytest.mark.unit
class TestEvaluate:
    def test_all_requirements_held_is_allowed(self):
        ctx = build_identity(permissions={"users:update", "roles:read"})

        decision = evaluate(requirements_for("users.update_roles"), ctx)

        assert decision.allowed
        assert decision.missing == ()

    def test_one_missing_requirement_denies(self):
        ctx = build_identity(permissions={"users:update"})

        decision = evaluate(requirements_for("users.update_roles"), ctx)

        assert not decision.allowed
        assert decision.missing_permissions == ["roles:read"]

    def test_reports_every_missing_requirement(self):
        ctx = build_identity(permissions=set())

        decision = evaluate(requirements_for("grants.create"), ctx)

        assert decision.missing_permissions == ["users:update", "access_grants:create"]

    def test_super_admin_bypasses_permission_checks(self):
        ctx = build_identity(AccessLevel.TENANT, RoleLevel.SUPER_ADMIN, permissions=set())

        for operation_id in POLICY_TABLE:
            assert evaluate(requirements_for(operation_id), ctx).allowed, operation_id

    def test_super_only_requirement_denies_holder_of_permission(self):
        ctx = build_identity(permissions={"sedes:delete"})

        decision = evaluate(requirements_for("sedes.delete"), ctx)

        assert not decision.allowed

    def test_empty_requirements_allow_anyone(self):
        ctx = build_identity(AccessLevel.OPERATIVO, permissions=set())

        assert evaluate(requirements_for("auth.me"), ctx).allowed


@pytest.mark.unit
class TestAuthorize:
    def test_denial_raises_forbidden_with_missing(self):
        ctx = build_identity(permissions={"users:read"})

        with pytest.raises(ForbiddenError) as exc:
            authorize("users.create", ctx)

        assert exc.value.status_code == 403
        assert exc.value.missing == ("users:create",)
        assert exc.value.details == {"missing": ["users:create"]}

    def test_super_only_denial_message(self):
        ctx = build_identity(permissions={"sedes:update"})

        with pytest.raises(ForbiddenError, match="Super administrator"):
            authorize("sedes.toggle_active", ctx)

    def test_allowed_returns_none(self):
        ctx = build_identity(permissions={"agentes:read"})

        assert authorize("agentes.list", ctx) is None


@pytest.mark.unit
class TestPolicyTable:
    def test_unknown_operation_is_rejected(self):
        with pytest.raises(KeyError):
            requirements_for("agentes.purge")

    def test_route_declaration_validates_operation_id(self):
        with pytest.raises(KeyError):
            require_operation("nope.nothing")

    def test_every_scoped_entity_has_read_operations(self):
        for kind in ("agentes", "patrullas", "multas", "permisos", "pagos_permisos", "sedes", "subsedes"):
            assert requirements_for(f"{kind}.list") == (PolicyRequirement(kind, "read"),)
            assert requirements_for(f"{kind}.get") == (PolicyRequirement(kind, "read"),)

    def test_catalogue_is_sorted_and_distinct(self):
        catalogue = all_permissions()

        assert catalogue == sorted(set(catalogue))
        assert ("users", "create") in catalogue
        assert ("access_grants", "delete") in catalogue

    def test_scoped_entities_declare_write_operations(self):
        for kind in ("agentes", "departamentos", "permisos", "pagos_permisos", "subsedes"):
            assert requirements_for(f"{kind}.create") == (PolicyRequirement(kind, "create"),)
            assert requirements_for(f"{kind}.update") == (PolicyRequirement(kind, "update"),)
        assert requirements_for("pagos_permisos.refund") == (PolicyRequirement("pagos_permisos", "refund"),)
        assert requirements_for("users.update") == (PolicyRequirement("users", "update"),)

    def test_sede_writes_are_super_only(self):
        ctx = build_identity(permissions={"sedes:create", "sedes:update"})

        assert not evaluate(requirements_for("sedes.create"), ctx).allowed
        assert not evaluate(requirements_for("sedes.update"), ctx).allowed
