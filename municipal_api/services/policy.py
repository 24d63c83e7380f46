from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from municipal_api.core.errors import ForbiddenError
from municipal_api.core.identity import IdentityContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyRequirement:
    """A (resource, action) capability; `is_super` requirements only a super-admin satisfies."""

    resource: str
    action: str
    is_super: bool = False

    @property
    def permission(self) -> str:
        return f"{self.resource}:{self.action}"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    missing: Tuple[PolicyRequirement, ...] = ()

    @property
    def missing_permissions(self) -> List[str]:
        return [r.permission for r in self.missing]


def _req(resource: str, action: str, is_super: bool = False) -> Tuple[PolicyRequirement, ...]:
    return (PolicyRequirement(resource, action, is_super),)


# Entity kinds served by the generic scoped entity routes.
SCOPED_ENTITY_KINDS = (
    "agentes",
    "tipos_agente",
    "departamentos",
    "patrullas",
    "multas",
    "permisos",
    "tipos_permiso",
    "pagos_permisos",
    "configuraciones",
    "subsedes",
    "sedes",
)

CATALOG_KINDS = ("themes", "permissions")


def _entity_policies() -> Dict[str, Tuple[PolicyRequirement, ...]]:
    table: Dict[str, Tuple[PolicyRequirement, ...]] = {}
    for kind in SCOPED_ENTITY_KINDS:
        table[f"{kind}.list"] = _req(kind, "read")
        table[f"{kind}.get"] = _req(kind, "read")
        table[f"{kind}.create"] = _req(kind, "create")
        table[f"{kind}.update"] = _req(kind, "update")
        table[f"{kind}.toggle_active"] = _req(kind, "update")
        table[f"{kind}.delete"] = _req(kind, "delete")
    # sedes are the top-level tenant units
    table["sedes.create"] = _req("sedes", "create", is_super=True)
    table["sedes.update"] = _req("sedes", "update", is_super=True)
    table["sedes.toggle_active"] = _req("sedes", "update", is_super=True)
    table["sedes.delete"] = _req("sedes", "delete", is_super=True)
    table["permisos.find_by_documento"] = _req("permisos", "read")
    table["pagos_permisos.refund"] = _req("pagos_permisos", "refund")
    for kind in CATALOG_KINDS:
        table[f"{kind}.list"] = _req(kind, "read")
        table[f"{kind}.get"] = _req(kind, "read")
    return table


POLICY_TABLE: Dict[str, Tuple[PolicyRequirement, ...]] = {
    **_entity_policies(),
    "auth.me": (),
    "users.list": _req("users", "read"),
    "users.get": _req("users", "read"),
    "users.create": _req("users", "create"),
    "users.update": _req("users", "update"),
    "users.update_roles": _req("users", "update") + _req("roles", "read"),
    "users.toggle_active": _req("users", "update"),
    "users.delete": _req("users", "delete"),
    "roles.list": _req("roles", "read"),
    "roles.get": _req("roles", "read"),
    "roles.create": _req("roles", "create"),
    "roles.update": _req("roles", "update"),
    "roles.deactivate": _req("roles", "delete"),
    "roles.activate": _req("roles", "update"),
    "grants.list": _req("users", "read") + _req("access_grants", "read"),
    "grants.create": _req("users", "update") + _req("access_grants", "create"),
    "grants.revoke": _req("users", "update") + _req("access_grants", "delete"),
}


# PUBLIC_INTERFACE
def requirements_for(operation_id: str) -> Tuple[PolicyRequirement, ...]:
    """Return the requirements declared for an operation; KeyError when undeclared."""
    return POLICY_TABLE[operation_id]


# PUBLIC_INTERFACE
def all_permissions() -> List[Tuple[str, str]]:
    """Distinct (resource, action) pairs declared anywhere in the policy table."""
    seen = set()
    for reqs in POLICY_TABLE.values():
        for r in reqs:
            seen.add((r.resource, r.action))
    return sorted(seen)


def _satisfied(requirement: PolicyRequirement, context: IdentityContext) -> bool:
    if requirement.is_super:
        return context.is_super_admin
    return context.is_super_admin or requirement.permission in context.permissions


# PUBLIC_INTERFACE
def evaluate(required: Iterable[PolicyRequirement], context: IdentityContext) -> PolicyDecision:
    """
    Decide allow/deny for a conjunction of requirements.

    A requirement holds when its "resource:action" string is in the caller's
    permission set or the caller is a super-admin. Requirements flagged
    `is_super` hold only for a super-admin. Every requirement must hold.
    """
    missing = tuple(r for r in required if not _satisfied(r, context))
    return PolicyDecision(allowed=not missing, missing=missing)


# PUBLIC_INTERFACE
def enforce(required: Sequence[PolicyRequirement], context: IdentityContext) -> None:
    """Raise ForbiddenError naming every unmet requirement."""
    decision = evaluate(required, context)
    if decision.allowed:
        return
    names = decision.missing_permissions
    logger.info("Policy denied subject=%s missing=%s", context.subject_id, names)
    if any(r.is_super for r in decision.missing):
        raise ForbiddenError("Access denied. Super administrator role required", missing=names)
    raise ForbiddenError(f"Access denied. Required permissions: {', '.join(names)}", missing=names)


# PUBLIC_INTERFACE
def authorize(operation_id: str, context: IdentityContext) -> None:
    """Look up the requirements of `operation_id` and enforce them."""
    enforce(requirements_for(operation_id), context)
