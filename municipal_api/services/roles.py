from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.errors import ConflictError, ForbiddenError, InvalidRequestError, NotFoundError
from municipal_api.core.identity import AccessLevel, IdentityContext, RoleLevel
from municipal_api.db.models import Role
from municipal_api.repositories.base import ScopedRepository
from municipal_api.repositories.filters import build_predicate, get_spec
from municipal_api.repositories.pagination import PaginatedResult, QueryWindow, paginate
from municipal_api.repositories.predicates import MATCH_ALL, Eq, In, IsNull, Predicate, and_, or_
from municipal_api.repositories.security import SecurityRepository
from municipal_api.schemas.auth import RoleCreate, RoleRead, RoleUpdate
from municipal_api.services.base import BaseService
from municipal_api.services.hierarchy import ensure_can_manage, manageable_levels

logger = logging.getLogger(__name__)


def _serialize(role: Any) -> Dict[str, Any]:
    return RoleRead.model_validate(role).model_dump(mode="json")


# PUBLIC_INTERFACE
def role_visibility(context: IdentityContext) -> Predicate:
    """
    Roles a caller may see.

    Super-admins see every role. Everyone else sees global roles and the
    custom roles owned by their sede (or, when bound to a subsede, by their
    subsede and sede-wide roles), limited to the levels they can manage plus
    their own level.
    """
    if context.is_super_admin:
        return MATCH_ALL
    if context.subsede_id is None:
        owned = Eq("sede_id", context.sede_id)
    else:
        owned = or_(
            Eq("subsede_id", context.subsede_id),
            and_(Eq("sede_id", context.sede_id), IsNull("subsede_id")),
        )
    levels = set(manageable_levels(context.role_level)) | {context.role_level}
    return and_(
        or_(Eq("is_global", True), owned),
        In("level", tuple(sorted(level.value for level in levels))),
    )


def _owner_of_new_role(context: IdentityContext):
    """(is_global, sede_id, subsede_id) for a role created by `context`."""
    if context.is_super_admin:
        return True, None, None
    if context.access_level in (AccessLevel.SUBSEDE, AccessLevel.OPERATIVO):
        return False, context.sede_id, context.subsede_id
    return False, context.sede_id, None


class RoleService(BaseService):
    """Role administration bounded by the role hierarchy."""

    def __init__(
        self,
        session: AsyncSession,
        roles: Optional[ScopedRepository] = None,
        security: Optional[SecurityRepository] = None,
    ) -> None:
        super().__init__(session)
        self.spec = get_spec("roles")
        self.roles = roles or ScopedRepository(session, self.spec)
        self.security = security or SecurityRepository(session)

    async def _get_visible(self, context: IdentityContext, role_id: int) -> Role:
        role = await self.roles.get_visible(role_visibility(context), role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    def _ensure_may_modify(self, role: Role, context: IdentityContext) -> None:
        if role.is_global and not context.is_super_admin:
            raise ForbiddenError("Only a super administrator can modify global roles")
        ensure_can_manage(role.level, context)

    async def _resolve_permissions(self, context: IdentityContext, permission_ids: Sequence[int]):
        permissions = await self.security.get_permissions_by_ids(permission_ids)
        missing = sorted(set(permission_ids) - {p.id for p in permissions})
        if missing:
            raise InvalidRequestError(f"Permissions not found: {missing}")
        if not context.is_super_admin:
            not_held = sorted(p.code for p in permissions if p.code not in context.permissions)
            if not_held:
                raise ForbiddenError(
                    "Cannot grant permissions you do not hold", missing=not_held
                )
        return permissions

    async def _ensure_name_free(self, name: str, role: Role, exclude_id: Optional[int] = None) -> None:
        existing = await self.security.find_role_by_name(name, role.sede_id, role.subsede_id)
        if existing is not None and existing.id != exclude_id:
            raise ConflictError(f"A role named '{name}' already exists in this scope")

    # PUBLIC_INTERFACE
    async def list(
        self,
        context: IdentityContext,
        filters: Optional[Mapping[str, Any]],
        window: QueryWindow,
    ) -> PaginatedResult:
        return await paginate(
            self.roles,
            build_predicate(self.spec, role_visibility(context), filters),
            self.spec.ordering(),
            page=window.page,
            page_size=window.page_size,
            prefetch_count=window.prefetch,
            activate_paginated=window.activate_paginated,
            transform=_serialize,
        )

    # PUBLIC_INTERFACE
    async def get(self, context: IdentityContext, role_id: int) -> Dict[str, Any]:
        return _serialize(await self._get_visible(context, role_id))

    # PUBLIC_INTERFACE
    async def create(self, context: IdentityContext, payload: RoleCreate) -> Dict[str, Any]:
        """Create a role owned by the caller's sede/subsede (global when created by a super-admin)."""
        ensure_can_manage(payload.level, context)
        permissions = await self._resolve_permissions(context, payload.permission_ids)

        is_global, sede_id, subsede_id = _owner_of_new_role(context)
        role = Role(
            name=payload.name.strip(),
            description=payload.description,
            level=payload.level,
            is_global=is_global,
            sede_id=sede_id,
            subsede_id=subsede_id,
        )
        await self._ensure_name_free(role.name, role)

        await self.security.add(role)
        await self.security.flush()
        await self.security.set_role_permissions(role.id, [p.id for p in permissions], granted_by=context.subject_id)
        await self.security.commit()
        await self.security.refresh(role)
        logger.info(
            "Created role id=%s name=%s level=%s by subject=%s",
            role.id, role.name, role.level.value, context.subject_id,
        )
        return _serialize(role)

    # PUBLIC_INTERFACE
    async def update(self, context: IdentityContext, role_id: int, payload: RoleUpdate) -> Dict[str, Any]:
        role = await self._get_visible(context, role_id)
        self._ensure_may_modify(role, context)
        if payload.level is not None and RoleLevel(payload.level) != role.level:
            ensure_can_manage(payload.level, context)
            # holders' access level was validated against the old level
            assigned = await self.security.count_active_assignments(role.id)
            if assigned:
                raise InvalidRequestError(
                    f"Role is assigned to {assigned} user(s); its level cannot change"
                )
        permissions = None
        if payload.permission_ids is not None:
            permissions = await self._resolve_permissions(context, payload.permission_ids)
        if payload.name is not None and payload.name.strip().lower() != role.name.lower():
            await self._ensure_name_free(payload.name.strip(), role, exclude_id=role.id)

        if payload.name is not None:
            role.name = payload.name.strip()
        if payload.description is not None:
            role.description = payload.description
        if payload.level is not None:
            role.level = RoleLevel(payload.level)
        await self.security.flush()
        if permissions is not None:
            await self.security.set_role_permissions(role.id, [p.id for p in permissions], granted_by=context.subject_id)
        await self.security.commit()
        await self.security.refresh(role)
        logger.info("Updated role id=%s by subject=%s", role.id, context.subject_id)
        return _serialize(role)

    # PUBLIC_INTERFACE
    async def deactivate(self, context: IdentityContext, role_id: int) -> Dict[str, Any]:
        """Deactivate a role; refused while users still hold it."""
        role = await self._get_visible(context, role_id)
        self._ensure_may_modify(role, context)
        assigned = await self.security.count_active_assignments(role.id)
        if assigned:
            raise InvalidRequestError(f"Role is assigned to {assigned} user(s) and cannot be deactivated")
        await self.roles.set_active(role, False)
        await self.roles.commit()
        logger.info("Deactivated role id=%s by subject=%s", role.id, context.subject_id)
        return _serialize(role)

    # PUBLIC_INTERFACE
    async def activate(self, context: IdentityContext, role_id: int) -> Dict[str, Any]:
        role = await self._get_visible(context, role_id)
        self._ensure_may_modify(role, context)
        await self.roles.set_active(role, True)
        await self.roles.commit()
        logger.info("Activated role id=%s by subject=%s", role.id, context.subject_id)
        return _serialize(role)
