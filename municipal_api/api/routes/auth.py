from __future__ import annotations

from fastapi import APIRouter, Depends

from municipal_api.core.deps import require_operation
from municipal_api.core.identity import IdentityContext
from municipal_api.schemas.auth import IdentityRead
from municipal_api.services.scope import scope_for

router = APIRouter(prefix="/auth", tags=["Auth"])


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=IdentityRead,
    summary="Read current identity",
    description=(
        "Return the resolved identity of the caller: roles, effective role level, "
        "permissions, grants and the visibility scope derived from them."
    ),
)
async def read_current_identity(
    context: IdentityContext = Depends(require_operation("auth.me")),
) -> IdentityRead:
    """Return the caller's IdentityContext together with its resolved scope."""
    return IdentityRead(**context.to_dict(), scope=scope_for(context).to_dict())
