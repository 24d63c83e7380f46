from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.errors import ConflictError, InvalidRequestError, NotFoundError
from municipal_api.core.identity import AccessLevel, IdentityContext, RoleLevel
from municipal_api.core.security import get_password_hash
from municipal_api.db.models import Role, User
from municipal_api.repositories.base import ScopedRepository
from municipal_api.repositories.filters import build_predicate, get_spec
from municipal_api.repositories.pagination import PaginatedResult, QueryWindow, paginate
from municipal_api.repositories.security import AccessGrantRepository, SecurityRepository
from municipal_api.schemas.auth import UserCreate, UserRead, UserUpdate
from municipal_api.services.base import BaseService
from municipal_api.services.hierarchy import ensure_can_manage, validate_role_assignment
from municipal_api.services.scope import ensure_in_scope, scope_for

logger = logging.getLogger(__name__)

# Access levels that must be pinned to a subsede.
_SUBSEDE_BOUND = (AccessLevel.SUBSEDE, AccessLevel.OPERATIVO)
_REQUIRED_PROFILE_FIELDS = ("email", "username", "first_name", "last_name")


def _serialize(user: Any) -> Dict[str, Any]:
    return UserRead.from_user(user).model_dump(mode="json")


class UserService(BaseService):
    """
    Administration of users within the caller's visibility.

    Scope and hierarchy checks always complete before anything is written.
    """

    def __init__(
        self,
        session: AsyncSession,
        users: Optional[ScopedRepository] = None,
        security: Optional[SecurityRepository] = None,
        grants: Optional[AccessGrantRepository] = None,
    ) -> None:
        super().__init__(session)
        self.spec = get_spec("users")
        self.users = users or ScopedRepository(session, self.spec)
        self.security = security or SecurityRepository(session)
        self.grants = grants or AccessGrantRepository(session)

    async def _get_visible(self, context: IdentityContext, user_id: int) -> User:
        predicate = build_predicate(self.spec, scope_for(context).to_predicate(self.spec), {})
        user = await self.users.get_visible(predicate, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _target_level(self, user: User) -> RoleLevel:
        roles = await self.security.list_active_roles_for_user(user.id)
        return RoleLevel.highest(r.level for r in roles)

    async def _load_roles(self, role_ids: Sequence[int]) -> List[Role]:
        roles = await self.security.get_roles_by_ids(role_ids)
        found = {r.id for r in roles}
        missing = sorted(set(role_ids) - found)
        if missing:
            raise InvalidRequestError(f"Roles not found: {missing}")
        inactive = sorted(r.id for r in roles if not r.is_active)
        if inactive:
            raise InvalidRequestError(f"Roles are inactive: {inactive}")
        return roles

    # PUBLIC_INTERFACE
    async def list(
        self,
        context: IdentityContext,
        filters: Optional[Mapping[str, Any]],
        window: QueryWindow,
    ) -> PaginatedResult:
        """List visible users with total/active/inactive counts of the visible population."""
        visibility = scope_for(context).to_predicate(self.spec)
        stats = await self.users.active_stats(build_predicate(self.spec, visibility, {}))
        return await paginate(
            self.users,
            build_predicate(self.spec, visibility, filters),
            self.spec.ordering(),
            page=window.page,
            page_size=window.page_size,
            prefetch_count=window.prefetch,
            activate_paginated=window.activate_paginated,
            transform=_serialize,
            stats=stats,
        )

    # PUBLIC_INTERFACE
    async def get(self, context: IdentityContext, user_id: int) -> Dict[str, Any]:
        return _serialize(await self._get_visible(context, user_id))

    # PUBLIC_INTERFACE
    async def create(self, context: IdentityContext, payload: UserCreate) -> Dict[str, Any]:
        """
        Create a user inside the caller's scope.

        Raises:
            ForbiddenError: target sede/subsede outside the caller's scope, or a
                role the caller may not assign.
            InvalidRequestError: unknown roles, role level / access level
                mismatch, inconsistent subsede data.
            ConflictError: email, username or document number already used.
        """
        ensure_in_scope(scope_for(context), payload.sede_id, payload.subsede_id)

        roles = await self._load_roles(payload.role_ids)
        validate_role_assignment([r.level for r in roles], payload.access_level, context)

        if payload.access_level in _SUBSEDE_BOUND and payload.subsede_id is None:
            raise InvalidRequestError(f"Access level {payload.access_level.value} requires a subsede")
        if payload.subsede_id is not None:
            subsede = await self.security.get_subsede(payload.subsede_id)
            if subsede is None or subsede.sede_id != payload.sede_id:
                raise InvalidRequestError("The subsede does not belong to the selected sede")

        if payload.subsede_access_ids:
            if payload.access_level is not AccessLevel.SEDE:
                raise InvalidRequestError("Additional subsede access is only allowed for SEDE level users")
            for subsede_id in sorted(set(payload.subsede_access_ids)):
                subsede = await self.security.get_subsede(subsede_id)
                if subsede is None or subsede.sede_id != payload.sede_id:
                    raise InvalidRequestError(
                        f"Subsede {subsede_id} does not belong to the user's sede"
                    )

        if await self.security.find_user_conflict(
            email=payload.email, username=payload.username, document_number=payload.document_number
        ):
            raise ConflictError("A user with that email, username or document number already exists")

        user = User(
            email=payload.email,
            username=payload.username,
            hashed_password=get_password_hash(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone_number=payload.phone_number,
            document_number=payload.document_number,
            access_level=payload.access_level,
            sede_id=payload.sede_id,
            subsede_id=payload.subsede_id,
            created_by=context.subject_id,
        )
        await self.security.add(user)
        await self.security.flush()
        await self.security.replace_user_roles(user.id, [r.id for r in roles], assigned_by=context.subject_id)
        for subsede_id in sorted(set(payload.subsede_access_ids)):
            await self.grants.add_subsede_grant(user.id, subsede_id, granted_by=context.subject_id)
        await self.security.commit()
        await self.security.refresh(user)

        logger.info(
            "Created user id=%s sede=%s subsede=%s roles=%s by subject=%s",
            user.id, user.sede_id, user.subsede_id, [r.name for r in roles], context.subject_id,
        )
        return UserRead.from_user(user, roles=roles).model_dump(mode="json")

    # PUBLIC_INTERFACE
    async def update(self, context: IdentityContext, user_id: int, payload: UserUpdate) -> Dict[str, Any]:
        """
        Update profile fields of a visible user, or move them to another subsede of their sede.

        Editing another user requires managing their level; nobody moves their own user.
        """
        user = await self._get_visible(context, user_id)
        is_self = user.id == context.subject_id
        if not is_self:
            ensure_can_manage(await self._target_level(user), context)

        data = payload.model_dump(exclude_unset=True)
        nulls = sorted(k for k in _REQUIRED_PROFILE_FIELDS if k in data and data[k] is None)
        if nulls:
            raise InvalidRequestError(f"Fields cannot be null: {nulls}")

        if "subsede_id" in data and data["subsede_id"] != user.subsede_id:
            subsede_id = data["subsede_id"]
            if is_self:
                raise InvalidRequestError("You cannot move your own user")
            if subsede_id is None and user.access_level in _SUBSEDE_BOUND:
                raise InvalidRequestError(f"Access level {user.access_level.value} requires a subsede")
            ensure_in_scope(scope_for(context), user.sede_id, subsede_id)
            if subsede_id is not None:
                subsede = await self.security.get_subsede(subsede_id)
                if subsede is None or subsede.sede_id != user.sede_id:
                    raise InvalidRequestError("The subsede does not belong to the user's sede")

        changed = {
            k: data[k] for k in ("email", "username", "document_number")
            if data.get(k) is not None and data[k] != getattr(user, k)
        }
        if changed and await self.security.find_user_conflict(**changed, exclude_id=user.id):
            raise ConflictError("A user with that email, username or document number already exists")

        for name, value in data.items():
            setattr(user, name, value)
        await self.security.commit()
        await self.security.refresh(user)
        roles = await self.security.list_active_roles_for_user(user.id)
        logger.info("Updated user id=%s fields=%s by subject=%s", user.id, sorted(data), context.subject_id)
        return UserRead.from_user(user, roles=roles).model_dump(mode="json")

    # PUBLIC_INTERFACE
    async def update_roles(self, context: IdentityContext, user_id: int, role_ids: Sequence[int]) -> Dict[str, Any]:
        """Replace the active roles of a visible user the caller may manage."""
        user = await self._get_visible(context, user_id)
        ensure_can_manage(await self._target_level(user), context)
        roles = await self._load_roles(role_ids)
        validate_role_assignment([r.level for r in roles], user.access_level, context)

        await self.security.replace_user_roles(user.id, [r.id for r in roles], assigned_by=context.subject_id)
        await self.security.commit()
        logger.info(
            "Replaced roles of user id=%s with %s by subject=%s",
            user.id, [r.name for r in roles], context.subject_id,
        )
        return UserRead.from_user(user, roles=roles).model_dump(mode="json")

    # PUBLIC_INTERFACE
    async def soft_delete(self, context: IdentityContext, user_id: int) -> Dict[str, Any]:
        if user_id == context.subject_id:
            raise InvalidRequestError("You cannot delete your own user")
        user = await self._get_visible(context, user_id)
        ensure_can_manage(await self._target_level(user), context)
        await self.users.mark_deleted(user)
        await self.users.commit()
        logger.info("Soft-deleted user id=%s by subject=%s", user_id, context.subject_id)
        return _serialize(user)

    # PUBLIC_INTERFACE
    async def toggle_active(self, context: IdentityContext, user_id: int) -> Dict[str, Any]:
        if user_id == context.subject_id:
            raise InvalidRequestError("You cannot deactivate your own user")
        user = await self._get_visible(context, user_id)
        ensure_can_manage(await self._target_level(user), context)
        await self.users.set_active(user, not user.is_active)
        await self.users.commit()
        logger.info("Set user id=%s active=%s by subject=%s", user_id, user.is_active, context.subject_id)
        return _serialize(user)
