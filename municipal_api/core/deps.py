from __future__ import annotations

import logging
from typing import AsyncGenerator, Callable, Optional

from fastapi import Depends, Header, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.errors import AuthenticationError
from municipal_api.core.identity import IdentityContext
from municipal_api.core.logging import bind_identity
from municipal_api.core.security import get_token_subject
from municipal_api.db.session import get_async_session
from municipal_api.services.identity import IdentityService
from municipal_api.services.policy import authorize, requirements_for

logger = logging.getLogger(__name__)

# Bearer token (used by docs); token issuance lives outside this service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# PUBLIC_INTERFACE
async def get_session(
    session_dep=Depends(get_async_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield the request-scoped AsyncSession."""
    yield session_dep


# PUBLIC_INTERFACE
async def get_identity(
    token: Optional[str] = Depends(oauth2_scheme),
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
    session: AsyncSession = Depends(get_session),
) -> IdentityContext:
    """
    Resolve the IdentityContext of the caller from the Authorization bearer token.

    The token only identifies the subject; roles, permissions, sede/subsede and
    grants are loaded from the database on every request.

    Raises:
        AuthenticationError: missing/invalid token, unknown or inactive user.
    """
    if not token:
        raise AuthenticationError("Not authenticated")
    user_id = get_token_subject(token)
    context = await IdentityService(session).load(user_id, tenant_id=x_tenant_id)
    bind_identity(context.subject_id, context.sede_id)
    return context


# PUBLIC_INTERFACE
def require_operation(operation_id: str) -> Callable:
    """
    Create a dependency that authorizes `operation_id` against the policy table.

    The operation id is validated when the route is declared, so a route can
    never be registered for an undeclared operation.
    """
    requirements_for(operation_id)

    async def _dep(request: Request, context: IdentityContext = Depends(get_identity)) -> IdentityContext:
        request.state.sede_id = context.sede_id
        authorize(operation_id, context)
        return context

    return _dep
