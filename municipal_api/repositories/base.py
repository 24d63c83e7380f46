from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import Executable, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.repositories.filters import EntitySpec
from municipal_api.repositories.predicates import Eq, OrderBy, Predicate, and_


class BaseRepository:
    """
    Base class for repositories providing common helpers.

    Note:
      Repositories never decide visibility. Scoped reads receive a predicate that
      already carries the caller's scope (see municipal_api.repositories.filters).
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute a SQLAlchemy statement."""
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return scalars."""
        result = await self.execute(statement, params)
        return result.scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return a single scalar or None."""
        result = await self.execute(statement, params)
        return result.scalar_one_or_none()

    async def commit(self) -> None:
        """Commit current transaction."""
        await self.session.commit()

    async def rollback(self) -> None:
        """Roll back the current transaction."""
        await self.session.rollback()

    async def flush(self) -> None:
        """Flush pending changes so generated keys are available."""
        await self.session.flush()

    async def refresh(self, entity: Any) -> Any:
        """Reload server-generated columns (timestamps, defaults) of an entity."""
        await self.session.refresh(entity)
        return entity

    async def add_all(self, entities: Iterable[Any]) -> None:
        """Add multiple entities to session."""
        self.session.add_all(list(entities))

    async def add(self, entity: Any) -> None:
        """Add a single entity to session."""
        self.session.add(entity)


class ScopedRepository(BaseRepository):
    """
    SQLAlchemy persistence for one entity kind, driven by predicate values.

    Implements the read contract of the paginator (`count`, `page`) plus the
    single-row lookup and the status writes used by the entity services.
    """

    # One AsyncSession cannot run statements concurrently.
    supports_concurrent_reads = False

    def __init__(self, session: AsyncSession, spec: EntitySpec) -> None:
        super().__init__(session)
        self.spec = spec
        self.model = spec.model

    # PUBLIC_INTERFACE
    async def count(self, predicate: Predicate) -> int:
        stmt = select(func.count()).select_from(self.model).where(predicate.to_sqlalchemy(self.model))
        result = await self.execute(stmt)
        return int(result.scalar_one())

    # PUBLIC_INTERFACE
    async def page(
        self,
        predicate: Predicate,
        order: Sequence[OrderBy],
        offset: int,
        limit: Optional[int],
    ) -> List[Any]:
        """Return rows matching `predicate` in `order`; `limit=None` returns every row."""
        stmt = (
            select(self.model)
            .where(predicate.to_sqlalchemy(self.model))
            .order_by(*(term.to_sqlalchemy(self.model) for term in order))
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(await self.scalars(stmt))

    # PUBLIC_INTERFACE
    async def first(self, predicate: Predicate) -> Optional[Any]:
        stmt = (
            select(self.model)
            .where(predicate.to_sqlalchemy(self.model))
            .order_by(*(term.to_sqlalchemy(self.model) for term in self.spec.ordering()))
            .limit(1)
        )
        return (await self.scalars(stmt)).first()

    # PUBLIC_INTERFACE
    async def get_visible(self, visibility: Predicate, entity_id: int) -> Optional[Any]:
        """Fetch one row by primary key, only if it also satisfies `visibility`."""
        return await self.first(and_(visibility, Eq(self.spec.pk_field, entity_id)))

    # PUBLIC_INTERFACE
    async def active_stats(self, predicate: Predicate) -> Dict[str, int]:
        """Total/active/inactive counts of the rows matching `predicate`."""
        active_field = self.spec.active_field
        if active_field is None:
            total = await self.count(predicate)
            return {"total": total, "active": total, "inactive": 0}
        column = getattr(self.model, active_field)
        stmt = (
            select(column, func.count())
            .select_from(self.model)
            .where(predicate.to_sqlalchemy(self.model))
            .group_by(column)
        )
        result = await self.execute(stmt)
        counts = {bool(flag): int(n) for flag, n in result.all()}
        active = counts.get(True, 0)
        inactive = counts.get(False, 0)
        return {"total": active + inactive, "active": active, "inactive": inactive}

    # PUBLIC_INTERFACE
    async def mark_deleted(self, entity: Any) -> Any:
        """Stamp the soft-delete column and clear the active flag; the caller commits."""
        setattr(entity, self.spec.deleted_field, datetime.now(tz=timezone.utc))
        if self.spec.active_field:
            setattr(entity, self.spec.active_field, False)
        await self.flush()
        return await self.refresh(entity)

    # PUBLIC_INTERFACE
    async def set_active(self, entity: Any, is_active: bool) -> Any:
        setattr(entity, self.spec.active_field, is_active)
        await self.flush()
        return await self.refresh(entity)
