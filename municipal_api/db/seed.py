"""
Database seeding utilities for minimal reference data.

Seeds:
- The permission catalogue (every resource:action named by the policy table)
- One global role per role level
- Role -> permission links for the global roles
- A default theme

Usage:
  python -m municipal_api.db.run_migrations upgrade head
  python -m municipal_api.db.seed
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from municipal_api.core.identity import RoleLevel
from municipal_api.db.session import get_session_maker
from municipal_api.services.policy import POLICY_TABLE, all_permissions

logger = logging.getLogger(__name__)

GLOBAL_ROLES: List[Tuple[str, RoleLevel, str]] = [
    ("Super Administrador", RoleLevel.SUPER_ADMIN, "Unrestricted access to every sede"),
    ("Administrador Estatal", RoleLevel.ESTATAL, "Administers one or more sedes"),
    ("Administrador Municipal", RoleLevel.MUNICIPAL, "Administers a subsede"),
    ("Operativo", RoleLevel.OPERATIVO, "Field staff with read access"),
]

# Resources municipal administrators do not manage.
_MUNICIPAL_EXCLUDED = {"sedes", "configuraciones", "themes", "permissions"}


def _super_only() -> set:
    """Pairs that only appear behind super-admin requirements."""
    pairs = set()
    for reqs in POLICY_TABLE.values():
        for r in reqs:
            if r.is_super:
                pairs.add((r.resource, r.action))
    for reqs in POLICY_TABLE.values():
        for r in reqs:
            if not r.is_super:
                pairs.discard((r.resource, r.action))
    return pairs


# PUBLIC_INTERFACE
def default_permissions_by_level() -> Dict[RoleLevel, List[Tuple[str, str]]]:
    """
    Permission pairs granted to each global role.

    SUPER_ADMIN bypasses permission checks and is linked to the full
    catalogue for visibility only.
    """
    catalogue = all_permissions()
    super_only = _super_only()
    estatal = [p for p in catalogue if p not in super_only]
    municipal = [p for p in estatal if p[0] not in _MUNICIPAL_EXCLUDED]
    operativo = [p for p in municipal if p[1] == "read" and p[0] not in ("users", "roles", "access_grants")]
    return {
        RoleLevel.SUPER_ADMIN: catalogue,
        RoleLevel.ESTATAL: estatal,
        RoleLevel.MUNICIPAL: municipal,
        RoleLevel.OPERATIVO: operativo,
    }


# PUBLIC_INTERFACE
async def seed_all() -> None:
    """
    Seed the database with minimal reference data.

    Idempotent: existing rows are left untouched and missing links are added.
    """
    maker = get_session_maker()
    async with maker() as session:
        perm_ids = await _seed_permissions(session, all_permissions())
        role_ids = await _seed_global_roles(session)
        for level, pairs in default_permissions_by_level().items():
            await _link_role_permissions(session, role_ids[level], (perm_ids[p] for p in pairs))
        await _seed_default_theme(session)
        await session.commit()
    logger.info("Seeded %d permissions and %d global roles", len(perm_ids), len(role_ids))


async def _seed_permissions(
    session: AsyncSession, pairs: Iterable[Tuple[str, str]]
) -> Dict[Tuple[str, str], int]:
    """Insert missing permissions and return a mapping (resource, action) -> id."""
    ids: Dict[Tuple[str, str], int] = {}
    for resource, action in pairs:
        await session.execute(
            text(
                """
                INSERT INTO permissions (resource, action, description)
                VALUES (:resource, :action, :desc)
                ON CONFLICT ON CONSTRAINT uq_permissions_resource_action DO NOTHING
                """
            ),
            {"resource": resource, "action": action, "desc": f"{action.title()} {resource.replace('_', ' ')}"},
        )
        res = await session.execute(
            text("SELECT id FROM permissions WHERE resource = :resource AND action = :action"),
            {"resource": resource, "action": action},
        )
        ids[(resource, action)] = res.scalar_one()
    return ids


async def _seed_global_roles(session: AsyncSession) -> Dict[RoleLevel, int]:
    """
    Ensure one global role per level.

    Global roles have NULL sede/subsede, which the unique constraint does not
    cover, so existence is checked by name first.
    """
    ids: Dict[RoleLevel, int] = {}
    for name, level, description in GLOBAL_ROLES:
        res = await session.execute(
            text("SELECT id FROM roles WHERE is_global AND lower(name) = lower(:name)"),
            {"name": name},
        )
        row = res.first()
        if row:
            ids[level] = row[0]
            continue

        inserted = await session.execute(
            text(
                """
                INSERT INTO roles (name, description, level, is_global)
                VALUES (:name, :desc, CAST(:level AS role_level), true)
                RETURNING id
                """
            ),
            {"name": name, "desc": description, "level": level.value},
        )
        ids[level] = inserted.scalar_one()
    return ids


async def _link_role_permissions(session: AsyncSession, role_id: int, permission_ids: Iterable[int]) -> None:
    for pid in permission_ids:
        await session.execute(
            text(
                """
                INSERT INTO role_permissions (role_id, permission_id)
                VALUES (:rid, :pid)
                ON CONFLICT ON CONSTRAINT uq_role_permissions_role_permission DO NOTHING
                """
            ),
            {"rid": role_id, "pid": pid},
        )


async def _seed_default_theme(session: AsyncSession) -> None:
    await session.execute(
        text(
            """
            INSERT INTO themes (name, description, primary_color, secondary_color, dark_mode, is_default)
            VALUES ('Institucional', 'Default theme', '#611232', '#a57f2c', false, true)
            ON CONFLICT (name) DO NOTHING
            """
        )
    )


# PUBLIC_INTERFACE
def main() -> None:
    """Entrypoint to run the asynchronous seeding."""
    asyncio.run(seed_all())


if __name__ == "__main__":
    main()
