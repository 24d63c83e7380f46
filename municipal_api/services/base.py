from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services own authorization decisions beyond the operation-level policy
    (scope, hierarchy) and delegate data access to repositories. All checks run
    before the first write; the service commits once at the end.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
