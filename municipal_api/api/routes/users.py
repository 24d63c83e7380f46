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
from municipal_api.schemas.auth import UserCreate, UserRead, UserRolesUpdate, UserUpdate
from municipal_api.schemas.common import PaginatedResponse
from municipal_api.services.users import UserService

router = APIRouter(prefix="/admin/users", tags=["Users"])


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=PaginatedResponse,
    summary="List users",
    description="List users visible to the caller, with total/active/inactive stats of that population.",
)
async def list_users(
    request: Request,
    window: QueryWindow = Depends(get_query_window),
    common: Dict[str, Any] = Depends(get_common_filters),
    context: IdentityContext = Depends(require_operation("users.list")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    filters = {**common, **exact_filters_from_request(request, get_spec("users"))}
    result = await UserService(session).list(context, filters, window)
    return result.to_dict()


# PUBLIC_INTERFACE
@router.get(
    "/{user_id}",
    response_model=UserRead,
    summary="Get user",
)
async def get_user(
    user_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("users.get")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await UserService(session).get(context, user_id)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create user",
    description=(
        "Create a user inside the caller's scope. The assigned roles must be below the "
        "caller's level and compatible with the requested access level."
    ),
)
async def create_user(
    payload: UserCreate,
    context: IdentityContext = Depends(require_operation("users.create")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await UserService(session).create(context, payload)


# PUBLIC_INTERFACE
@router.patch(
    "/{user_id}",
    response_model=UserRead,
    summary="Update user",
    description="Update profile fields or move the user to another subsede of their sede.",
)
async def update_user(
    payload: UserUpdate,
    user_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("users.update")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await UserService(session).update(context, user_id, payload)


# PUBLIC_INTERFACE
@router.put(
    "/{user_id}/roles",
    response_model=UserRead,
    summary="Replace user roles",
)
async def update_user_roles(
    payload: UserRolesUpdate,
    user_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("users.update_roles")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await UserService(session).update_roles(context, user_id, payload.role_ids)


# PUBLIC_INTERFACE
@router.patch(
    "/{user_id}/toggle-active",
    response_model=UserRead,
    summary="Toggle user active flag",
)
async def toggle_user_active(
    user_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("users.toggle_active")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await UserService(session).toggle_active(context, user_id)


# PUBLIC_INTERFACE
@router.delete(
    "/{user_id}",
    response_model=UserRead,
    summary="Soft delete user",
)
async def delete_user(
    user_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("users.delete")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await UserService(session).soft_delete(context, user_id)
