from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional


class AccessLevel(str, enum.Enum):
    """Granularity at which a principal's visibility is bounded."""

    TENANT = "TENANT"
    SEDE = "SEDE"
    SUBSEDE = "SUBSEDE"
    OPERATIVO = "OPERATIVO"


class RoleLevel(str, enum.Enum):
    """Role levels, strictly ordered SUPER_ADMIN > ESTATAL > MUNICIPAL > OPERATIVO."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ESTATAL = "ESTATAL"
    MUNICIPAL = "MUNICIPAL"
    OPERATIVO = "OPERATIVO"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    # PUBLIC_INTERFACE
    @classmethod
    def highest(cls, levels: Iterable["RoleLevel"]) -> "RoleLevel":
        """Return the highest level in `levels`; OPERATIVO when empty."""
        best = cls.OPERATIVO
        for level in levels:
            if _ROLE_RANK[level] > _ROLE_RANK[best]:
                best = level
        return best


_ROLE_RANK = {
    RoleLevel.OPERATIVO: 0,
    RoleLevel.MUNICIPAL: 1,
    RoleLevel.ESTATAL: 2,
    RoleLevel.SUPER_ADMIN: 3,
}


@dataclass(frozen=True)
class IdentityContext:
    """
    Resolved claims of the authenticated caller for a single request.

    Built once by the identity dependency (municipal_api.core.deps.get_identity) from the
    bearer token subject and the *current* database state of the principal:
    active roles, their permissions and active access grants. The context is
    immutable and never persisted.

    `role_level` and `is_super_admin` are computed from role levels when the
    context is built; downstream code never inspects role names.
    """

    subject_id: int
    sede_id: int
    subsede_id: Optional[int]
    access_level: AccessLevel
    role_level: RoleLevel = RoleLevel.OPERATIVO
    roles: frozenset = field(default_factory=frozenset)
    permissions: frozenset = field(default_factory=frozenset)
    sede_grants: tuple = ()
    subsede_grants: tuple = ()
    is_super_admin: bool = False
    tenant_id: Optional[str] = None

    # PUBLIC_INTERFACE
    @classmethod
    def build(
        cls,
        *,
        subject_id: int,
        sede_id: int,
        subsede_id: Optional[int],
        access_level: AccessLevel | str,
        role_levels: Dict[str, RoleLevel | str],
        permissions: Iterable[str] = (),
        sede_grants: Iterable[int] = (),
        subsede_grants: Iterable[int] = (),
        tenant_id: Optional[str] = None,
    ) -> "IdentityContext":
        """
        Construct a context from raw principal data.

        Parameters:
            role_levels: mapping of active role name -> role level
            permissions: "resource:action" strings granted through those roles
            sede_grants / subsede_grants: ids of active explicit access grants
        """
        levels = [RoleLevel(v) for v in role_levels.values()]
        return cls(
            subject_id=subject_id,
            sede_id=sede_id,
            subsede_id=subsede_id,
            access_level=AccessLevel(access_level),
            role_level=RoleLevel.highest(levels),
            roles=frozenset(role_levels.keys()),
            permissions=frozenset(permissions),
            sede_grants=tuple(sorted(set(sede_grants))),
            subsede_grants=tuple(sorted(set(subsede_grants))),
            is_super_admin=RoleLevel.SUPER_ADMIN in levels,
            tenant_id=tenant_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "tenant_id": self.tenant_id,
            "sede_id": self.sede_id,
            "subsede_id": self.subsede_id,
            "access_level": self.access_level.value,
            "role_level": self.role_level.value,
            "roles": sorted(self.roles),
            "permissions": sorted(self.permissions),
            "sede_grants": list(self.sede_grants),
            "subsede_grants": list(self.subsede_grants),
            "is_super_admin": self.is_super_admin,
        }
