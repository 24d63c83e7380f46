from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.errors import AuthenticationError
from municipal_api.core.identity import IdentityContext
from municipal_api.repositories.security import AccessGrantRepository, SecurityRepository
from municipal_api.services.base import BaseService

logger = logging.getLogger(__name__)


class IdentityService(BaseService):
    """Builds the per-request IdentityContext from the current database state."""

    def __init__(
        self,
        session: AsyncSession,
        security: Optional[SecurityRepository] = None,
        grants: Optional[AccessGrantRepository] = None,
    ) -> None:
        super().__init__(session)
        self.security = security or SecurityRepository(session)
        self.grants = grants or AccessGrantRepository(session)

    # PUBLIC_INTERFACE
    async def load(self, user_id: int, tenant_id: Optional[str] = None) -> IdentityContext:
        """
        Resolve the identity of `user_id`.

        Roles, permissions and grants are read on every call, so revocations
        take effect on the next request.

        Raises:
            AuthenticationError: user missing, soft-deleted or inactive.
        """
        user = await self.security.get_user_by_id(user_id)
        if user is None or not user.is_active:
            logger.info("Rejected identity for user_id=%s (missing or inactive)", user_id)
            raise AuthenticationError("User not found or inactive")

        roles = await self.security.list_active_roles_for_user(user.id)
        permissions = await self.security.permission_codes_for_roles(r.id for r in roles)
        sede_grants, subsede_grants = await self.grants.active_grant_ids(user.id)

        return IdentityContext.build(
            subject_id=user.id,
            sede_id=user.sede_id,
            subsede_id=user.subsede_id,
            access_level=user.access_level,
            role_levels={r.name: r.level for r in roles},
            permissions=permissions,
            sede_grants=sede_grants,
            subsede_grants=subsede_grants,
            tenant_id=tenant_id,
        )
