from typing import Any, Dict, List

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
from municipal_api.schemas.common import PaginatedResponse
from municipal_api.schemas.entities import ENTITY_WRITE_SCHEMAS
from municipal_api.services.entities import service_for
from municipal_api.services.policy import CATALOG_KINDS, SCOPED_ENTITY_KINDS

# Entity kind -> URL segment
ENTITY_PATHS: Dict[str, str] = {kind: kind.replace("_", "-") for kind in SCOPED_ENTITY_KINDS + CATALOG_KINDS}


# PUBLIC_INTERFACE
def build_entity_router(kind: str) -> APIRouter:
    """
    Build the read, write and status routes of one entity kind.

    Every route declares its operation id; the policy check runs in the
    dependency before the handler, and the handler only ever sees rows inside
    the caller's scope.
    """
    spec = get_spec(kind)
    segment = ENTITY_PATHS[kind]
    title = segment.replace("-", " ").title()
    router = APIRouter(prefix=f"/{segment}", tags=[title])

    # PUBLIC_INTERFACE
    @router.get(
        "",
        response_model=PaginatedResponse,
        summary=f"List {title}",
        description=(
            "Paginated list restricted to the caller's sede/subsede scope. Supports "
            "page, limit, prefetch, activatePaginated, search, dateFrom, dateTo, "
            f"includeDeleted and exact filters: {', '.join(spec.exact_filters) or 'none'}."
        ),
        operation_id=f"{kind}_list",
    )
    async def list_entities(
        request: Request,
        window: QueryWindow = Depends(get_query_window),
        common: Dict[str, Any] = Depends(get_common_filters),
        context: IdentityContext = Depends(require_operation(f"{kind}.list")),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        filters = {**common, **exact_filters_from_request(request, spec)}
        result = await service_for(session, kind).list(context, filters, window)
        return result.to_dict()

    # PUBLIC_INTERFACE
    @router.get(
        "/{entity_id}",
        response_model=Dict[str, Any],
        summary=f"Get {title} by id",
        description="Returns 404 when the entity does not exist or is outside the caller's scope.",
        operation_id=f"{kind}_get",
    )
    async def get_entity(
        entity_id: int = Path(..., ge=1),
        context: IdentityContext = Depends(require_operation(f"{kind}.get")),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        return await service_for(session, kind).get(context, entity_id)

    if spec.is_catalog:
        return router

    create_schema, update_schema = ENTITY_WRITE_SCHEMAS[kind]

    # PUBLIC_INTERFACE
    @router.post(
        "",
        response_model=Dict[str, Any],
        status_code=status.HTTP_201_CREATED,
        summary=f"Create {title}",
        description=(
            "Owner sede/subsede default to the caller's own; a target outside the caller's "
            "scope is rejected with 403."
        ),
        operation_id=f"{kind}_create",
    )
    async def create_entity(
        payload: create_schema,
        context: IdentityContext = Depends(require_operation(f"{kind}.create")),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        return await service_for(session, kind).create(context, payload)

    # PUBLIC_INTERFACE
    @router.patch(
        "/{entity_id}",
        response_model=Dict[str, Any],
        summary=f"Update {title}",
        description="Partial update; returns 404 when the entity is outside the caller's scope.",
        operation_id=f"{kind}_update",
    )
    async def update_entity(
        payload: update_schema,
        entity_id: int = Path(..., ge=1),
        context: IdentityContext = Depends(require_operation(f"{kind}.update")),
        session: AsyncSession = Depends(get_session),
    ) -> Dict[str, Any]:
        return await service_for(session, kind).update(context, entity_id, payload)

    if spec.deleted_field is not None:
        # PUBLIC_INTERFACE
        @router.delete(
            "/{entity_id}",
            response_model=Dict[str, Any],
            summary=f"Soft delete {title}",
            operation_id=f"{kind}_delete",
        )
        async def delete_entity(
            entity_id: int = Path(..., ge=1),
            context: IdentityContext = Depends(require_operation(f"{kind}.delete")),
            session: AsyncSession = Depends(get_session),
        ) -> Dict[str, Any]:
            return await service_for(session, kind).soft_delete(context, entity_id)

    if spec.active_field is not None:
        # PUBLIC_INTERFACE
        @router.patch(
            "/{entity_id}/toggle-active",
            response_model=Dict[str, Any],
            summary=f"Toggle {title} active flag",
            operation_id=f"{kind}_toggle_active",
        )
        async def toggle_entity(
            entity_id: int = Path(..., ge=1),
            context: IdentityContext = Depends(require_operation(f"{kind}.toggle_active")),
            session: AsyncSession = Depends(get_session),
        ) -> Dict[str, Any]:
            return await service_for(session, kind).set_active(context, entity_id)

    return router


# PUBLIC_INTERFACE
def build_entity_routers() -> List[APIRouter]:
    return [build_entity_router(kind) for kind in ENTITY_PATHS]
