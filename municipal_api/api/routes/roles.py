from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.api.routes.params import (
    exact_filters_from_request,
    get_common_filters,
    get_query_window,
)
from municipal_api.core.deps import get_session, require_operation
from municipal_api.core.identity import IdentityContext
from municipal_api.repositories.filters import get_spec
from municipal_api.repositories.pagination import QueryWindow
from municipal_api.schemas.auth import RoleCreate, RoleRead, RoleUpdate
from municipal_api.schemas.common import PaginatedResponse
from municipal_api.services.roles import RoleService

router = APIRouter(prefix="/admin/roles", tags=["Roles"])


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=PaginatedResponse,
    summary="List roles",
    description="Global roles plus the roles owned by the caller's sede/subsede, limited to manageable levels.",
)
async def list_roles(
    request: Request,
    window: QueryWindow = Depends(get_query_window),
    common: Dict[str, Any] = Depends(get_common_filters),
    context: IdentityContext = Depends(require_operation("roles.list")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    filters = {**common, **exact_filters_from_request(request, get_spec("roles"))}
    result = await RoleService(session).list(context, filters, window)
    return result.to_dict()


# PUBLIC_INTERFACE
@router.get("/{role_id}", response_model=RoleRead, summary="Get role")
async def get_role(
    role_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("roles.get")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await RoleService(session).get(context, role_id)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create role",
    description="Only permissions already held by the caller can be attached (super-admins excepted).",
)
async def create_role(
    payload: RoleCreate,
    context: IdentityContext = Depends(require_operation("roles.create")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await RoleService(session).create(context, payload)


# PUBLIC_INTERFACE
@router.patch("/{role_id}", response_model=RoleRead, summary="Update role")
async def update_role(
    payload: RoleUpdate,
    role_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("roles.update")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await RoleService(session).update(context, role_id, payload)


# PUBLIC_INTERFACE
@router.post(
    "/{role_id}/deactivate",
    response_model=RoleRead,
    summary="Deactivate role",
    description="Refused while the role is still assigned to active users.",
)
async def deactivate_role(
    role_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("roles.deactivate")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await RoleService(session).deactivate(context, role_id)


# PUBLIC_INTERFACE
@router.post("/{role_id}/activate", response_model=RoleRead, summary="Activate role")
async def activate_role(
    role_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("roles.activate")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await RoleService(session).activate(context, role_id)
