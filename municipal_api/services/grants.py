from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.errors import ConflictError, InvalidRequestError, NotFoundError
from municipal_api.core.identity import AccessLevel, IdentityContext, RoleLevel
from municipal_api.db.models import User
from municipal_api.repositories.base import ScopedRepository
from municipal_api.repositories.filters import build_predicate, get_spec
from municipal_api.repositories.security import AccessGrantRepository, SecurityRepository
from municipal_api.schemas.auth import GrantList, GrantRead
from municipal_api.services.base import BaseService
from municipal_api.services.hierarchy import ensure_can_manage
from municipal_api.services.scope import ensure_in_scope, scope_for

logger = logging.getLogger(__name__)


class AccessGrantService(BaseService):
    """
    Explicit sede/subsede access grants.

    A grant widens the target user's scope, so the caller must see the user,
    manage the user's role level and already see the granted sede/subsede.
    """

    def __init__(
        self,
        session: AsyncSession,
        users: Optional[ScopedRepository] = None,
        security: Optional[SecurityRepository] = None,
        grants: Optional[AccessGrantRepository] = None,
    ) -> None:
        super().__init__(session)
        self.user_spec = get_spec("users")
        self.users = users or ScopedRepository(session, self.user_spec)
        self.security = security or SecurityRepository(session)
        self.grants = grants or AccessGrantRepository(session)

    async def _get_manageable_user(self, context: IdentityContext, user_id: int) -> User:
        predicate = build_predicate(self.user_spec, scope_for(context).to_predicate(self.user_spec), {})
        user = await self.users.get_visible(predicate, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        roles = await self.security.list_active_roles_for_user(user.id)
        ensure_can_manage(RoleLevel.highest(r.level for r in roles), context)
        return user

    # PUBLIC_INTERFACE
    async def list_for_user(
        self, context: IdentityContext, user_id: int, include_revoked: bool = False
    ) -> Dict[str, Any]:
        predicate = build_predicate(self.user_spec, scope_for(context).to_predicate(self.user_spec), {})
        if await self.users.get_visible(predicate, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        sedes, subsedes = await self.grants.list_for_user(user_id, include_revoked=include_revoked)
        return GrantList(
            sedes=[GrantRead.from_grant(g, "sede") for g in sedes],
            subsedes=[GrantRead.from_grant(g, "subsede") for g in subsedes],
        ).model_dump(mode="json")

    # PUBLIC_INTERFACE
    async def grant_sede(self, context: IdentityContext, user_id: int, sede_id: int) -> Dict[str, Any]:
        user = await self._get_manageable_user(context, user_id)
        if user.access_level != AccessLevel.SEDE:
            raise InvalidRequestError("Sede access can only be granted to SEDE level users")
        ensure_in_scope(scope_for(context), sede_id, None)
        if await self.security.get_sede(sede_id) is None:
            raise InvalidRequestError(f"Sede {sede_id} does not exist")
        if sede_id == user.sede_id:
            raise InvalidRequestError("The user already belongs to that sede")
        if await self.grants.find_active_sede_grant(user.id, sede_id):
            raise ConflictError("The user already has access to that sede")

        grant = await self.grants.add_sede_grant(user.id, sede_id, granted_by=context.subject_id)
        await self.grants.commit()
        logger.info("Granted sede=%s to user=%s by subject=%s", sede_id, user.id, context.subject_id)
        return GrantRead.from_grant(grant, "sede").model_dump(mode="json")

    # PUBLIC_INTERFACE
    async def grant_subsede(self, context: IdentityContext, user_id: int, subsede_id: int) -> Dict[str, Any]:
        user = await self._get_manageable_user(context, user_id)
        subsede = await self.security.get_subsede(subsede_id)
        if subsede is None:
            raise InvalidRequestError(f"Subsede {subsede_id} does not exist")
        ensure_in_scope(scope_for(context), subsede.sede_id, subsede.id)
        if user.access_level == AccessLevel.TENANT:
            raise InvalidRequestError("TENANT level users already see every subsede")
        if user.access_level == AccessLevel.SEDE and subsede.sede_id != user.sede_id:
            raise InvalidRequestError(f"Subsede {subsede_id} does not belong to the user's sede")
        if subsede_id == user.subsede_id:
            raise InvalidRequestError("The user already belongs to that subsede")
        if await self.grants.find_active_subsede_grant(user.id, subsede_id):
            raise ConflictError("The user already has access to that subsede")

        grant = await self.grants.add_subsede_grant(user.id, subsede_id, granted_by=context.subject_id)
        await self.grants.commit()
        logger.info("Granted subsede=%s to user=%s by subject=%s", subsede_id, user.id, context.subject_id)
        return GrantRead.from_grant(grant, "subsede").model_dump(mode="json")

    # PUBLIC_INTERFACE
    async def revoke(self, context: IdentityContext, user_id: int, kind: str, grant_id: int) -> Dict[str, Any]:
        """Deactivate one grant of the user; the row is kept with revocation stamps."""
        user = await self._get_manageable_user(context, user_id)
        if kind == "sede":
            grant = await self.grants.get_sede_grant(grant_id)
        elif kind == "subsede":
            grant = await self.grants.get_subsede_grant(grant_id)
        else:
            raise InvalidRequestError("Grant kind must be 'sede' or 'subsede'")
        if grant is None or grant.user_id != user.id or not grant.is_active:
            raise NotFoundError(f"Active {kind} grant {grant_id} not found for user {user_id}")

        await self.grants.deactivate(grant, revoked_by=context.subject_id)
        await self.grants.commit()
        logger.info("Revoked %s grant id=%s of user=%s by subject=%s", kind, grant_id, user.id, context.subject_id)
        return GrantRead.from_grant(grant, kind).model_dump(mode="json")
