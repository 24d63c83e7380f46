"""
Prefetching paginator.

Executes a predicate against a persistence collaborator and returns the
requested page, a bounded window of already-materialized following pages and
pagination metadata. Stateless: every call works only on its arguments.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from municipal_api.repositories.predicates import OrderBy, Predicate

logger = logging.getLogger(__name__)


class Persistence(Protocol):
    """Read contract the paginator needs from the storage layer."""

    async def count(self, predicate: Predicate) -> int: ...

    async def page(
        self,
        predicate: Predicate,
        order: Sequence[OrderBy],
        offset: int,
        limit: Optional[int],
    ) -> List[Any]: ...


@dataclass(frozen=True)
class QueryWindow:
    """Validated paging request: 1-based page, page size, prefetch depth, paging switch."""

    page: int = 1
    page_size: int = 10
    prefetch: int = 0
    activate_paginated: bool = True


@dataclass(frozen=True)
class PaginationInfo:
    total_items: int
    items_per_page: int
    current_page: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "itemsPerPage": self.items_per_page,
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }


@dataclass(frozen=True)
class PageData:
    page_number: int
    items: List[Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"pageNumber": self.page_number, "items": list(self.items)}


@dataclass(frozen=True)
class PaginatedResult:
    pagination: PaginationInfo
    items: List[Any]
    next_pages: List[PageData] = field(default_factory=list)
    stats: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "pagination": self.pagination.to_dict(),
            "items": list(self.items),
            "nextPages": [p.to_dict() for p in self.next_pages],
        }
        if self.stats is not None:
            out["stats"] = self.stats
        return out


def _apply(transform: Optional[Callable[[Any], Any]], rows: Sequence[Any]) -> List[Any]:
    if transform is None:
        return list(rows)
    return [transform(r) for r in rows]


async def _fetch_pages(
    persistence: Persistence,
    predicate: Predicate,
    order: Sequence[OrderBy],
    page_numbers: Sequence[int],
    page_size: int,
) -> List[List[Any]]:
    def fetch(n: int):
        return persistence.page(predicate, order, (n - 1) * page_size, page_size)

    if getattr(persistence, "supports_concurrent_reads", False):
        return list(await asyncio.gather(*(fetch(n) for n in page_numbers)))

    results = []
    for n in page_numbers:
        results.append(await fetch(n))
    return results


# PUBLIC_INTERFACE
async def paginate(
    persistence: Persistence,
    predicate: Predicate,
    order: Sequence[OrderBy],
    page: int = 1,
    page_size: int = 10,
    prefetch_count: int = 0,
    activate_paginated: bool = True,
    transform: Optional[Callable[[Any], Any]] = None,
    stats: Optional[Dict[str, Any]] = None,
) -> PaginatedResult:
    """
    Run `predicate` and shape the result as a paginated response.

    Parameters:
        persistence: object exposing count() and page()
        predicate: fully built query predicate (scope already applied)
        order: ordering terms; should end with a unique key for stable pages
        page: 1-based page number (pre-validated, >= 1)
        page_size: items per page (pre-validated, 1..100)
        prefetch_count: number of following pages to materialize (>= 0)
        activate_paginated: when False, return every row as a single page
        transform: optional per-row mapping applied to every returned item
        stats: optional aggregate data attached to the result unchanged
    Returns:
        PaginatedResult

    Out-of-range pages return no items and are not an error. Persistence
    errors propagate unchanged; nothing is retried.
    """
    if not activate_paginated:
        rows = await persistence.page(predicate, order, 0, None)
        items = _apply(transform, rows)
        info = PaginationInfo(
            total_items=len(items),
            items_per_page=len(items),
            current_page=1,
            total_pages=1,
            has_next_page=False,
            has_previous_page=False,
        )
        return PaginatedResult(pagination=info, items=items, next_pages=[], stats=stats)

    total_items = await persistence.count(predicate)
    total_pages = math.ceil(total_items / page_size) if total_items else 0

    info = PaginationInfo(
        total_items=total_items,
        items_per_page=page_size,
        current_page=page,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1 and total_pages > 0,
    )

    if page > total_pages:
        logger.debug("Requested page %s beyond total_pages=%s", page, total_pages)
        return PaginatedResult(pagination=info, items=[], next_pages=[], stats=stats)

    last_prefetched = min(page + max(prefetch_count, 0), total_pages)
    page_numbers = list(range(page, last_prefetched + 1))
    pages = await _fetch_pages(persistence, predicate, order, page_numbers, page_size)

    items = _apply(transform, pages[0])
    next_pages = [
        PageData(page_number=n, items=_apply(transform, rows))
        for n, rows in zip(page_numbers[1:], pages[1:])
        if rows
    ]
    logger.debug(
        "Paginated page=%s size=%s total=%s prefetched=%s",
        page, page_size, total_items, len(next_pages),
    )
    return PaginatedResult(pagination=info, items=items, next_pages=next_pages, stats=stats)
