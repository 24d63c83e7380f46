from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable

from municipal_api.core.errors import ForbiddenError, InvalidRequestError
from municipal_api.core.identity import AccessLevel, IdentityContext, RoleLevel

logger = logging.getLogger(__name__)

# Which target role levels an actor of a given level may create, assign or manage.
MANAGEABLE_LEVELS: Dict[RoleLevel, FrozenSet[RoleLevel]] = {
    RoleLevel.SUPER_ADMIN: frozenset(
        {RoleLevel.SUPER_ADMIN, RoleLevel.ESTATAL, RoleLevel.MUNICIPAL, RoleLevel.OPERATIVO}
    ),
    RoleLevel.ESTATAL: frozenset({RoleLevel.ESTATAL, RoleLevel.MUNICIPAL}),
    RoleLevel.MUNICIPAL: frozenset({RoleLevel.MUNICIPAL, RoleLevel.OPERATIVO}),
    RoleLevel.OPERATIVO: frozenset(),
}

# Access levels a principal may hold together with a role of the given level.
COMPATIBLE_ACCESS_LEVELS: Dict[RoleLevel, FrozenSet[AccessLevel]] = {
    RoleLevel.SUPER_ADMIN: frozenset({AccessLevel.TENANT}),
    RoleLevel.ESTATAL: frozenset({AccessLevel.SEDE}),
    RoleLevel.MUNICIPAL: frozenset({AccessLevel.SUBSEDE}),
    RoleLevel.OPERATIVO: frozenset({AccessLevel.SUBSEDE, AccessLevel.OPERATIVO}),
}


# PUBLIC_INTERFACE
def can_manage(target_level: RoleLevel, actor_level: RoleLevel) -> bool:
    """Return True when an actor of `actor_level` may manage roles of `target_level`."""
    return RoleLevel(target_level) in MANAGEABLE_LEVELS[RoleLevel(actor_level)]


# PUBLIC_INTERFACE
def manageable_levels(actor_level: RoleLevel) -> FrozenSet[RoleLevel]:
    return MANAGEABLE_LEVELS[RoleLevel(actor_level)]


# PUBLIC_INTERFACE
def ensure_can_manage(target_level: RoleLevel, context: IdentityContext) -> None:
    """
    Raise ForbiddenError unless the caller may manage `target_level`.

    The top level is only ever granted by a caller that already holds it; that
    check is made against `is_super_admin` independently of the table.
    """
    target = RoleLevel(target_level)
    if target is RoleLevel.SUPER_ADMIN and not context.is_super_admin:
        logger.warning("Subject %s attempted to manage a SUPER_ADMIN role", context.subject_id)
        raise ForbiddenError("Only a super administrator can manage super administrator roles")
    if not can_manage(target, context.role_level):
        logger.warning(
            "Hierarchy denied subject=%s actor_level=%s target_level=%s",
            context.subject_id, context.role_level.value, target.value,
        )
        raise ForbiddenError(
            f"Role level {context.role_level.value} cannot manage roles of level {target.value}"
        )


# PUBLIC_INTERFACE
def ensure_level_matches_access(role_level: RoleLevel, access_level: AccessLevel) -> None:
    """Raise InvalidRequestError when a role level and an access level disagree."""
    level = RoleLevel(role_level)
    access = AccessLevel(access_level)
    if access not in COMPATIBLE_ACCESS_LEVELS[level]:
        allowed = ", ".join(sorted(a.value for a in COMPATIBLE_ACCESS_LEVELS[level]))
        raise InvalidRequestError(
            f"A {level.value} role requires access level {allowed}, got {access.value}"
        )


# PUBLIC_INTERFACE
def validate_role_assignment(
    role_levels: Iterable[RoleLevel],
    access_level: AccessLevel,
    context: IdentityContext,
) -> None:
    """
    Validate assigning roles of `role_levels` to a principal with `access_level`.

    Every role must be manageable by the caller (Forbidden otherwise) and must
    agree with the access level being assigned (Bad Request otherwise). Hierarchy
    checks run first so an unauthorized caller learns nothing about level rules.
    Performs no I/O; callers run it before any write.
    """
    levels = [RoleLevel(level) for level in role_levels]
    for level in levels:
        ensure_can_manage(level, context)
    for level in levels:
        ensure_level_matches_access(level, access_level)
