from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.api.routes.params import get_query_window
from municipal_api.core.deps import get_session, require_operation
from municipal_api.core.identity import IdentityContext
from municipal_api.repositories.pagination import QueryWindow
from municipal_api.schemas.common import PaginatedResponse
from municipal_api.schemas.entities import ReembolsoCreate
from municipal_api.services.entities import PagoPermisoService, PermisoService

# Included before the generic entity routers so "/permisos/by-documento"
# is not captured by "/permisos/{entity_id}".
router = APIRouter(tags=["Permisos"])


# PUBLIC_INTERFACE
@router.get(
    "/permisos/by-documento",
    response_model=PaginatedResponse,
    summary="Permits of a citizen document",
    description="Paginated permits of one citizen document inside the caller's scope, optionally narrowed to the permit a payment belongs to.",
    operation_id="permisos_find_by_documento",
)
async def find_permits_by_documento(
    documento: str = Query(..., min_length=1, alias="documentoCiudadano"),
    pago_id: Optional[int] = Query(None, ge=1, alias="pagoId"),
    window: QueryWindow = Depends(get_query_window),
    context: IdentityContext = Depends(require_operation("permisos.find_by_documento")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    result = await PermisoService(session, "permisos").find_by_documento(context, documento, pago_id, window)
    return result.to_dict()


# PUBLIC_INTERFACE
@router.post(
    "/pagos-permisos/{pago_id}/refund",
    response_model=Dict[str, Any],
    status_code=status.HTTP_201_CREATED,
    summary="Refund a permit payment",
    operation_id="pagos_permisos_refund",
)
async def refund_payment(
    payload: ReembolsoCreate,
    pago_id: int = Path(..., ge=1),
    context: IdentityContext = Depends(require_operation("pagos_permisos.refund")),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await PagoPermisoService(session, "pagos_permisos").refund(context, pago_id, payload)
