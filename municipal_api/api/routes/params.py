from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Query, Request

from municipal_api.core.errors import InvalidRequestError
from municipal_api.core.settings import get_app_settings
from municipal_api.repositories.filters import (
    DATE_FROM_KEY,
    DATE_TO_KEY,
    INCLUDE_DELETED_KEY,
    SEARCH_KEY,
    EntitySpec,
)
from municipal_api.repositories.pagination import QueryWindow

_settings = get_app_settings()

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


# PUBLIC_INTERFACE
def get_query_window(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: Optional[int] = Query(None, ge=1, le=_settings.MAX_PAGE_SIZE, description="Items per page"),
    prefetch: int = Query(0, ge=0, description="Number of following pages to include in nextPages"),
    activate_paginated: bool = Query(True, alias="activatePaginated", description="When false, return every row"),
) -> QueryWindow:
    """Build the QueryWindow of a list request; prefetch is capped by MAX_PREFETCH_PAGES."""
    return QueryWindow(
        page=page,
        page_size=limit or _settings.DEFAULT_PAGE_SIZE,
        prefetch=min(prefetch, _settings.MAX_PREFETCH_PAGES),
        activate_paginated=activate_paginated,
    )


# PUBLIC_INTERFACE
def get_common_filters(
    search: Optional[str] = Query(None, description="Free-text search over the entity's searchable fields"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    include_deleted: bool = Query(False, alias="includeDeleted"),
) -> Dict[str, Any]:
    return {
        SEARCH_KEY: search,
        DATE_FROM_KEY: date_from,
        DATE_TO_KEY: date_to,
        INCLUDE_DELETED_KEY: include_deleted,
    }


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _coerce(spec: EntitySpec, column: str, raw: str) -> Any:
    python_type = getattr(spec.model, column).type.python_type
    try:
        if python_type is bool:
            value = raw.strip().lower()
            if value in _TRUE:
                return True
            if value in _FALSE:
                return False
            raise ValueError(raw)
        if python_type is int:
            return int(raw)
        if isinstance(python_type, type) and issubclass(python_type, enum.Enum):
            return python_type(raw)
    except ValueError:
        raise InvalidRequestError(f"Invalid value for filter '{column}': {raw!r}")
    return raw


# PUBLIC_INTERFACE
def exact_filters_from_request(request: Request, spec: EntitySpec) -> Dict[str, Any]:
    """
    Read the entity's exact-match filters from the query string.

    Both snake_case and camelCase parameter names are accepted; values are
    converted to the column's Python type.
    """
    out: Dict[str, Any] = {}
    params = request.query_params
    for key, column in spec.exact_filters.items():
        raw = params.get(key)
        if raw is None:
            raw = params.get(_camel(key))
        if raw is None or raw == "":
            continue
        out[key] = _coerce(spec, column, raw)
    return out
