from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Tuple

from municipal_api.core.errors import ForbiddenError
from municipal_api.core.identity import AccessLevel, IdentityContext
from municipal_api.repositories.predicates import MATCH_ALL, MATCH_NONE, In, Predicate

if TYPE_CHECKING:
    from municipal_api.repositories.filters import EntitySpec

logger = logging.getLogger(__name__)


class ScopeKind(str, enum.Enum):
    UNRESTRICTED = "unrestricted"
    NONE = "none"
    SEDE = "sede"
    SUBSEDE = "subsede"


@dataclass(frozen=True)
class ScopePredicate:
    """
    Visibility of a caller expressed over the sede/subsede dimensions.

    The value is entity-agnostic: `to_predicate` maps the restricted dimension
    onto a concrete entity's identifier column using its EntitySpec. `ids` is
    always sorted and de-duplicated so identical inputs produce equal values.
    """

    kind: ScopeKind
    ids: Tuple[int, ...] = ()

    @property
    def is_unrestricted(self) -> bool:
        return self.kind is ScopeKind.UNRESTRICTED

    # PUBLIC_INTERFACE
    def to_predicate(self, spec: "EntitySpec") -> Predicate:
        """
        Translate the scope into a row predicate for the given entity kind.

        Catalogue entities (no tenant columns) are visible to everyone. An
        entity lacking the column for the restricted dimension matches nothing.
        """
        if self.kind is ScopeKind.UNRESTRICTED or spec.is_catalog:
            return MATCH_ALL
        if self.kind is ScopeKind.NONE:
            return MATCH_NONE
        field = spec.sede_field if self.kind is ScopeKind.SEDE else spec.subsede_field
        if field is None:
            return MATCH_NONE
        return In(field, self.ids)

    # PUBLIC_INTERFACE
    def covers(self, sede_id: Optional[int], subsede_id: Optional[int]) -> bool:
        """Return True when a (sede, subsede) target lies inside this scope."""
        if self.kind is ScopeKind.UNRESTRICTED:
            return True
        if self.kind is ScopeKind.SEDE:
            return sede_id is not None and sede_id in self.ids
        if self.kind is ScopeKind.SUBSEDE:
            return subsede_id is not None and subsede_id in self.ids
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "ids": list(self.ids)}


UNRESTRICTED_SCOPE = ScopePredicate(ScopeKind.UNRESTRICTED)
EMPTY_SCOPE = ScopePredicate(ScopeKind.NONE)


def _id_set(*groups: Iterable[Optional[int]]) -> Tuple[int, ...]:
    ids = set()
    for group in groups:
        ids.update(i for i in group if i is not None)
    return tuple(sorted(ids))


# PUBLIC_INTERFACE
def resolve_scope(
    access_level: AccessLevel,
    own_sede_id: Optional[int],
    own_subsede_id: Optional[int],
    sede_grants: Iterable[int] = (),
    subsede_grants: Iterable[int] = (),
    is_super_admin: bool = False,
) -> ScopePredicate:
    """
    Resolve the visibility scope of a caller.

    Rules:
      - super-admin: unrestricted, checked before anything else
      - TENANT: unrestricted
      - SEDE: sede in {own sede} + explicit sede grants
      - SUBSEDE / OPERATIVO: subsede in {own subsede} + explicit subsede grants;
        an empty set matches no rows
    """
    if is_super_admin:
        return UNRESTRICTED_SCOPE

    level = AccessLevel(access_level)
    if level is AccessLevel.TENANT:
        return UNRESTRICTED_SCOPE

    if level is AccessLevel.SEDE:
        ids = _id_set([own_sede_id], sede_grants)
        return ScopePredicate(ScopeKind.SEDE, ids) if ids else EMPTY_SCOPE

    ids = _id_set([own_subsede_id], subsede_grants)
    if not ids:
        return EMPTY_SCOPE
    return ScopePredicate(ScopeKind.SUBSEDE, ids)


# PUBLIC_INTERFACE
def scope_for(context: IdentityContext) -> ScopePredicate:
    """Resolve the scope carried by an identity context."""
    return resolve_scope(
        context.access_level,
        context.sede_id,
        context.subsede_id,
        context.sede_grants,
        context.subsede_grants,
        context.is_super_admin,
    )


# PUBLIC_INTERFACE
def ensure_in_scope(scope: ScopePredicate, sede_id: Optional[int], subsede_id: Optional[int]) -> None:
    """
    Raise ForbiddenError when a write targets a sede/subsede outside `scope`.

    Used for operations that name their target explicitly (creating users,
    granting access); reads use scoped queries instead and report Not Found.
    """
    if not scope.covers(sede_id, subsede_id):
        logger.warning(
            "Target outside scope: scope=%s sede_id=%s subsede_id=%s",
            scope.to_dict(), sede_id, subsede_id,
        )
        raise ForbiddenError("Target sede/subsede is outside your access scope")
