from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import func, or_, select, update

from municipal_api.db.models import (
    Permission,
    Role,
    RolePermission,
    Sede,
    Subsede,
    User,
    UserRole,
    UserSedeAccess,
    UserSubsedeAccess,
)
from .base import BaseRepository


class SecurityRepository(BaseRepository):
    """Repository for users, roles, permissions and their associations."""

    # Users
    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        stmt = select(User).where(User.id == user_id, User.deleted_at.is_(None))
        return await self.scalar_one_or_none(stmt)

    async def find_user_conflict(
        self,
        *,
        email: Optional[str] = None,
        username: Optional[str] = None,
        document_number: Optional[str] = None,
        exclude_id: Optional[int] = None,
    ) -> Optional[User]:
        """Return an existing user (other than `exclude_id`) sharing email, username or document number."""
        clauses = []
        if email:
            clauses.append(User.email == email)
        if username:
            clauses.append(User.username == username)
        if document_number:
            clauses.append(User.document_number == document_number)
        if not clauses:
            return None
        stmt = select(User).where(or_(*clauses))
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return (await self.scalars(stmt.limit(1))).first()

    async def list_active_roles_for_user(self, user_id: int) -> List[Role]:
        stmt = (
            select(Role)
            .join(UserRole, Role.id == UserRole.role_id)
            .where(
                UserRole.user_id == user_id,
                UserRole.is_active.is_(True),
                Role.is_active.is_(True),
            )
        )
        result = await self.scalars(stmt)
        return list(result)

    async def replace_user_roles(self, user_id: int, role_ids: Sequence[int], assigned_by: Optional[int]) -> None:
        """Deactivate the user's current role links and add one active link per role id."""
        await self.execute(
            update(UserRole)
            .where(UserRole.user_id == user_id, UserRole.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await self.add_all(UserRole(user_id=user_id, role_id=rid, assigned_by=assigned_by) for rid in role_ids)
        await self.flush()

    # Roles
    async def get_roles_by_ids(self, role_ids: Iterable[int]) -> List[Role]:
        ids = list(set(role_ids))
        if not ids:
            return []
        stmt = select(Role).where(Role.id.in_(ids))
        return list(await self.scalars(stmt))

    async def find_role_by_name(
        self, name: str, sede_id: Optional[int], subsede_id: Optional[int]
    ) -> Optional[Role]:
        """Look up a role by name within one owner scope (global roles have no owner)."""
        stmt = select(Role).where(
            func.lower(Role.name) == name.lower(),
            Role.sede_id.is_(None) if sede_id is None else Role.sede_id == sede_id,
            Role.subsede_id.is_(None) if subsede_id is None else Role.subsede_id == subsede_id,
        )
        return (await self.scalars(stmt)).first()

    async def count_active_assignments(self, role_id: int) -> int:
        stmt = select(func.count(UserRole.id)).where(
            UserRole.role_id == role_id, UserRole.is_active.is_(True)
        )
        result = await self.execute(stmt)
        return int(result.scalar_one())

    # Permissions
    async def permission_codes_for_roles(self, role_ids: Iterable[int]) -> Set[str]:
        ids = list(set(role_ids))
        if not ids:
            return set()
        stmt = (
            select(Permission.resource, Permission.action)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id.in_(ids), Permission.is_active.is_(True))
        )
        result = await self.execute(stmt)
        return {f"{resource}:{action}" for resource, action in result.all()}

    async def get_permissions_by_ids(self, permission_ids: Iterable[int]) -> List[Permission]:
        ids = list(set(permission_ids))
        if not ids:
            return []
        stmt = select(Permission).where(Permission.id.in_(ids), Permission.is_active.is_(True))
        return list(await self.scalars(stmt))

    async def set_role_permissions(self, role_id: int, permission_ids: Sequence[int], granted_by: Optional[int]) -> None:
        """Make `permission_ids` the exact permission set of the role."""
        existing = await self.execute(
            select(RolePermission).where(RolePermission.role_id == role_id)
        )
        current = {rp.permission_id: rp for rp in existing.scalars()}
        wanted = set(permission_ids)
        for pid, link in current.items():
            if pid not in wanted:
                await self.session.delete(link)
        await self.add_all(
            RolePermission(role_id=role_id, permission_id=pid, granted_by=granted_by)
            for pid in wanted - set(current)
        )
        await self.flush()

    # Organization
    async def get_sede(self, sede_id: int) -> Optional[Sede]:
        stmt = select(Sede).where(Sede.id == sede_id, Sede.deleted_at.is_(None))
        return await self.scalar_one_or_none(stmt)

    async def get_subsede(self, subsede_id: int) -> Optional[Subsede]:
        stmt = select(Subsede).where(Subsede.id == subsede_id, Subsede.deleted_at.is_(None))
        return await self.scalar_one_or_none(stmt)


class AccessGrantRepository(BaseRepository):
    """Explicit sede/subsede grants; rows are deactivated, never deleted."""

    async def active_grant_ids(self, user_id: int) -> Tuple[List[int], List[int]]:
        """Return (sede ids, subsede ids) of the user's active grants."""
        sedes = await self.scalars(
            select(UserSedeAccess.sede_id).where(
                UserSedeAccess.user_id == user_id, UserSedeAccess.is_active.is_(True)
            )
        )
        subsedes = await self.scalars(
            select(UserSubsedeAccess.subsede_id).where(
                UserSubsedeAccess.user_id == user_id, UserSubsedeAccess.is_active.is_(True)
            )
        )
        return list(sedes), list(subsedes)

    async def list_for_user(
        self, user_id: int, include_revoked: bool = False
    ) -> Tuple[List[UserSedeAccess], List[UserSubsedeAccess]]:
        sede_stmt = select(UserSedeAccess).where(UserSedeAccess.user_id == user_id)
        subsede_stmt = select(UserSubsedeAccess).where(UserSubsedeAccess.user_id == user_id)
        if not include_revoked:
            sede_stmt = sede_stmt.where(UserSedeAccess.is_active.is_(True))
            subsede_stmt = subsede_stmt.where(UserSubsedeAccess.is_active.is_(True))
        sedes = await self.scalars(sede_stmt.order_by(UserSedeAccess.granted_at.desc(), UserSedeAccess.id))
        subsedes = await self.scalars(
            subsede_stmt.order_by(UserSubsedeAccess.granted_at.desc(), UserSubsedeAccess.id)
        )
        return list(sedes), list(subsedes)

    async def find_active_sede_grant(self, user_id: int, sede_id: int) -> Optional[UserSedeAccess]:
        stmt = select(UserSedeAccess).where(
            UserSedeAccess.user_id == user_id,
            UserSedeAccess.sede_id == sede_id,
            UserSedeAccess.is_active.is_(True),
        )
        return (await self.scalars(stmt)).first()

    async def find_active_subsede_grant(self, user_id: int, subsede_id: int) -> Optional[UserSubsedeAccess]:
        stmt = select(UserSubsedeAccess).where(
            UserSubsedeAccess.user_id == user_id,
            UserSubsedeAccess.subsede_id == subsede_id,
            UserSubsedeAccess.is_active.is_(True),
        )
        return (await self.scalars(stmt)).first()

    async def get_sede_grant(self, grant_id: int) -> Optional[UserSedeAccess]:
        return await self.scalar_one_or_none(select(UserSedeAccess).where(UserSedeAccess.id == grant_id))

    async def get_subsede_grant(self, grant_id: int) -> Optional[UserSubsedeAccess]:
        return await self.scalar_one_or_none(select(UserSubsedeAccess).where(UserSubsedeAccess.id == grant_id))

    async def add_sede_grant(self, user_id: int, sede_id: int, granted_by: Optional[int]) -> UserSedeAccess:
        grant = UserSedeAccess(user_id=user_id, sede_id=sede_id, granted_by=granted_by)
        await self.add(grant)
        await self.flush()
        await self.refresh(grant)
        return grant

    async def add_subsede_grant(self, user_id: int, subsede_id: int, granted_by: Optional[int]) -> UserSubsedeAccess:
        grant = UserSubsedeAccess(user_id=user_id, subsede_id=subsede_id, granted_by=granted_by)
        await self.add(grant)
        await self.flush()
        await self.refresh(grant)
        return grant

    async def deactivate(self, grant, revoked_by: Optional[int]) -> None:
        grant.is_active = False
        grant.revoked_by = revoked_by
        grant.revoked_at = datetime.now(tz=timezone.utc)
        await self.flush()
