from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.deps import get_session, require_operation
from municipal_api.core.identity import IdentityContext
from municipal_api.schemas.auth import GrantCreate, GrantList, GrantRead
from municipal_api.services.grants import AccessGrantService

router = APIRouter(prefix="/admin/users/{user_id}/grants", tags=["Access Grants"])


# PUBLIC_INTERFACE
@router.get("", response_model=GrantList, summary="List access grants of a user")
async def list_grants(
    user_id: int = Path(..., ge=1),
    include_revoked: bool = Query(False, alias="includeRevoked"),
    context: IdentityContext = Depends(require_operation("grants.list")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await AccessGrantService(session).list_for_user(context, user_id, include_revoked=include_revoked)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=GrantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Grant sede or subsede access",
    description="Provide exactly one of sede_id or subsede_id. The target must already be visible to the caller.",
)
async def create_grant(
    payload: GrantCreate,
    user_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("grants.create")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    service = AccessGrantService(session)
    if payload.sede_id is not None:
        return await service.grant_sede(context, user_id, payload.sede_id)
    return await service.grant_subsede(context, user_id, payload.subsede_id)


# PUBLIC_INTERFACE
@router.delete("/{kind}/{grant_id}", response_model=GrantRead, summary="Revoke an access grant")
async def revoke_grant(
    kind: Literal["sede", "subsede"],
    user_id: int = Path(..., ge=1),
    grant_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("grants.revoke")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await AccessGrantService(session).revoke(context, user_id, kind, grant_id)
