"""Unit tests for the prefetching paginator.

Tests cover:
- Page and prefetch window shaping
- Super-admin listing of rows without tenant ids
- Out-of-range pages
- Consistency and completeness across every page
- Unpaginated mode, transform and stats passthrough
- Sequential vs concurrent page reads
"""

import pytest

from municipal_api.core.identity import AccessLevel, RoleLevel
from municipal_api.repositories.filters import build, get_spec
from municipal_api.repositories.pagination import QueryWindow, paginate
from municipal_api.services.scope import scope_for
from tests.conftest import (
    ConcurrentInMemoryPersistence,
    InMemoryPersistence,
    build_identity,
    make_row,
)

SPEC = get_spec("agentes")
ORDER = SPEC.ordering()


def _agentes():
    """25 rows in subsedes 7 and 9, plus noise in subsede 8 and a deleted row."""
    rows = []
    for i in range(1, 26):
        rows.append(
            make_row(
                i,
                subsede_id=7 if i % 2 else 9,
                apellido_paterno=f"Apellido{i % 6}",
                nombres=f"Nombre{i:02d}",
            )
        )
    rows += [make_row(100 + i, subsede_id=8, apellido_paterno="Ajeno", nombres="X") for i in range(5)]
    rows.append(make_row(200, subsede_id=7, apellido_paterno="Borrado", nombres="Z", deleted_at=rows[0]["created_at"]))
    return rows


def _subsede_caller():
    return build_identity(AccessLevel.SUBSEDE, sede_id=1, subsede_id=7, subsede_grants=[9])


@pytest.mark.unit
class TestWindowShaping:
    async def test_prefetch_window(self):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})

        result = await paginate(store, predicate, ORDER, page=1, page_size=10, prefetch_count=2)

        assert len(result.items) == 10
        assert [len(p.items) for p in result.next_pages] == [10, 5]
        assert [p.page_number for p in result.next_pages] == [2, 3]
        assert result.pagination.total_pages == 3
        assert result.pagination.total_items == 25
        assert result.pagination.has_next_page is True
        assert result.pagination.has_previous_page is False

    async def test_super_admin_sees_rows_without_tenant_ids(self):
        rows = [make_row(i, sede_id=None, subsede_id=None, apellido_paterno="A", nombres=str(i)) for i in range(1, 4)]
        ctx = build_identity(AccessLevel.TENANT, RoleLevel.SUPER_ADMIN)

        result = await paginate(InMemoryPersistence(rows), build("agentes", scope_for(ctx), {}), ORDER)

        assert result.pagination.total_items == 3

    async def test_page_beyond_last_is_empty_not_error(self):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})

        result = await paginate(store, predicate, ORDER, page=5, page_size=10, prefetch_count=2)

        assert result.items == []
        assert result.next_pages == []
        assert result.pagination.total_pages == 3
        assert result.pagination.has_next_page is False
        assert result.pagination.has_previous_page is True
        assert [c[0] for c in store.calls] == ["count"]


@pytest.mark.unit
class TestConsistency:
    @pytest.mark.parametrize("page_size", [1, 3, 7, 10, 25, 40])
    async def test_pages_concatenate_to_the_full_ordered_result(self, page_size):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})
        everything = await store.page(predicate, ORDER, 0, None)

        collected = []
        first = await paginate(store, predicate, ORDER, page=1, page_size=page_size)
        for n in range(1, first.pagination.total_pages + 1):
            result = await paginate(store, predicate, ORDER, page=n, page_size=page_size)
            collected.extend(result.items)

        assert [r["id"] for r in collected] == [r["id"] for r in everything]
        assert len({r["id"] for r in collected}) == 25
        assert all(r["subsede_id"] in (7, 9) for r in collected)

    async def test_prefetched_pages_equal_direct_pages(self):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})

        window = await paginate(store, predicate, ORDER, page=1, page_size=4, prefetch_count=3)

        for prefetched in window.next_pages:
            direct = await paginate(store, predicate, ORDER, page=prefetched.page_number, page_size=4)
            assert prefetched.items == direct.items

    async def test_prefetch_stops_at_last_page(self):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})

        result = await paginate(store, predicate, ORDER, page=2, page_size=10, prefetch_count=5)

        assert [p.page_number for p in result.next_pages] == [3]

    async def test_concurrent_reads_give_the_same_result(self):
        predicate = build("agentes", scope_for(_subsede_caller()), {})
        sequential = await paginate(InMemoryPersistence(_agentes()), predicate, ORDER, page=1, page_size=6, prefetch_count=4)
        concurrent = await paginate(
            ConcurrentInMemoryPersistence(_agentes()), predicate, ORDER, page=1, page_size=6, prefetch_count=4
        )

        assert concurrent.to_dict() == sequential.to_dict()


@pytest.mark.unit
class TestModes:
    async def test_unpaginated_returns_everything(self):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})

        result = await paginate(store, predicate, ORDER, page=3, page_size=5, activate_paginated=False)

        assert len(result.items) == 25
        assert result.pagination.total_pages == 1
        assert result.pagination.current_page == 1
        assert result.pagination.items_per_page == 25
        assert result.next_pages == []

    async def test_empty_result(self):
        result = await paginate(InMemoryPersistence([]), build("agentes", scope_for(_subsede_caller()), {}), ORDER)

        assert result.pagination.total_items == 0
        assert result.pagination.total_pages == 0
        assert result.pagination.has_next_page is False
        assert result.pagination.has_previous_page is False

    async def test_transform_and_stats(self):
        store = InMemoryPersistence(_agentes())
        predicate = build("agentes", scope_for(_subsede_caller()), {})

        result = await paginate(
            store, predicate, ORDER, page=1, page_size=2, prefetch_count=1,
            transform=lambda r: r["id"], stats={"total": 25},
        )
        body = result.to_dict()

        assert all(isinstance(i, int) for i in body["items"])
        assert all(isinstance(i, int) for i in body["nextPages"][0]["items"])
        assert body["stats"] == {"total": 25}
        assert set(body["pagination"]) == {
            "totalItems", "itemsPerPage", "currentPage", "totalPages", "hasNextPage", "hasPreviousPage",
        }

    def test_query_window_defaults(self):
        window = QueryWindow()

        assert (window.page, window.page_size, window.prefetch, window.activate_paginated) == (1, 10, 0, True)
