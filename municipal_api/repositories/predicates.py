"""
Immutable query predicates.

Predicates are plain values describing a row filter. They can be serialized
(`to_dict`), evaluated against an in-memory row (`matches`) or compiled into a
SQLAlchemy boolean clause for a mapped model (`to_sqlalchemy`). Building a
predicate never touches the database.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import and_ as sa_and
from sqlalchemy import false as sa_false
from sqlalchemy import or_ as sa_or
from sqlalchemy import true as sa_true
from sqlalchemy.sql.elements import ColumnElement


def _value_of(row: Any, field: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(field)
    return getattr(row, field, None)


def _column(model: Any, field: str):
    return getattr(model, field)


def _plain(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Predicate:
    """Base class for predicate values."""

    def matches(self, row: Any) -> bool:  # pragma: no cover - abstract
        raise NotImplementedError

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:  # pragma: no cover - abstract
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:  # pragma: no cover - abstract
        raise NotImplementedError


@dataclass(frozen=True)
class MatchAll(Predicate):
    def matches(self, row: Any) -> bool:
        return True

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return sa_true()

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "all"}


@dataclass(frozen=True)
class MatchNone(Predicate):
    def matches(self, row: Any) -> bool:
        return False

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return sa_false()

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "none"}


MATCH_ALL = MatchAll()
MATCH_NONE = MatchNone()


@dataclass(frozen=True)
class Eq(Predicate):
    field: str
    value: Any

    def matches(self, row: Any) -> bool:
        return _value_of(row, self.field) == self.value

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return _column(model, self.field) == self.value

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "eq", "field": self.field, "value": _plain(self.value)}


@dataclass(frozen=True)
class In(Predicate):
    field: str
    values: Tuple[Any, ...]

    def matches(self, row: Any) -> bool:
        return _value_of(row, self.field) in self.values

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return _column(model, self.field).in_(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "in", "field": self.field, "values": [_plain(v) for v in self.values]}


@dataclass(frozen=True)
class IsNull(Predicate):
    field: str

    def matches(self, row: Any) -> bool:
        return _value_of(row, self.field) is None

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return _column(model, self.field).is_(None)

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "is_null", "field": self.field}


@dataclass(frozen=True)
class Contains(Predicate):
    """Case-insensitive substring match."""

    field: str
    text: str

    def matches(self, row: Any) -> bool:
        value = _value_of(row, self.field)
        if value is None:
            return False
        return self.text.lower() in str(value).lower()

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        pattern = f"%{_escape_like(self.text)}%"
        return _column(model, self.field).ilike(pattern, escape="\\")

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "contains", "field": self.field, "text": self.text}


@dataclass(frozen=True)
class StartsWith(Predicate):
    """Case-sensitive prefix match, used for sequence-style codes."""

    field: str
    prefix: str

    def matches(self, row: Any) -> bool:
        value = _value_of(row, self.field)
        return value is not None and str(value).startswith(self.prefix)

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return _column(model, self.field).like(f"{_escape_like(self.prefix)}%", escape="\\")

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "starts_with", "field": self.field, "prefix": self.prefix}


@dataclass(frozen=True)
class Range(Predicate):
    """Inclusive bounds on a single field; either bound may be omitted."""

    field: str
    gte: Optional[Any] = None
    lte: Optional[Any] = None

    def matches(self, row: Any) -> bool:
        value = _value_of(row, self.field)
        if value is None:
            return False
        if self.gte is not None and value < self.gte:
            return False
        if self.lte is not None and value > self.lte:
            return False
        return True

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        col = _column(model, self.field)
        clauses = []
        if self.gte is not None:
            clauses.append(col >= self.gte)
        if self.lte is not None:
            clauses.append(col <= self.lte)
        return sa_and(*clauses) if clauses else sa_true()

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "range", "field": self.field, "gte": _plain(self.gte), "lte": _plain(self.lte)}


@dataclass(frozen=True)
class And(Predicate):
    items: Tuple[Predicate, ...]

    def matches(self, row: Any) -> bool:
        return all(p.matches(row) for p in self.items)

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return sa_and(*(p.to_sqlalchemy(model) for p in self.items))

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "and", "items": [p.to_dict() for p in self.items]}


@dataclass(frozen=True)
class Or(Predicate):
    items: Tuple[Predicate, ...]

    def matches(self, row: Any) -> bool:
        return any(p.matches(row) for p in self.items)

    def to_sqlalchemy(self, model: Any) -> ColumnElement[bool]:
        return sa_or(*(p.to_sqlalchemy(model) for p in self.items))

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "or", "items": [p.to_dict() for p in self.items]}


# PUBLIC_INTERFACE
def and_(*predicates: Predicate) -> Predicate:
    """
    Conjunction preserving argument order.

    MATCH_ALL operands are dropped, any MATCH_NONE operand collapses the whole
    conjunction to MATCH_NONE, and nested And values are flattened.
    """
    items = []
    for p in predicates:
        if isinstance(p, MatchNone):
            return MATCH_NONE
        if isinstance(p, MatchAll):
            continue
        if isinstance(p, And):
            items.extend(p.items)
        else:
            items.append(p)
    if not items:
        return MATCH_ALL
    if len(items) == 1:
        return items[0]
    return And(tuple(items))


# PUBLIC_INTERFACE
def or_(*predicates: Predicate) -> Predicate:
    """Disjunction; the dual of and_()."""
    items = []
    for p in predicates:
        if isinstance(p, MatchAll):
            return MATCH_ALL
        if isinstance(p, MatchNone):
            continue
        if isinstance(p, Or):
            items.extend(p.items)
        else:
            items.append(p)
    if not items:
        return MATCH_NONE
    if len(items) == 1:
        return items[0]
    return Or(tuple(items))


@dataclass(frozen=True)
class OrderBy:
    """Single ordering term."""

    field: str
    descending: bool = False

    def to_sqlalchemy(self, model: Any):
        col = _column(model, self.field)
        return col.desc() if self.descending else col.asc()

    # PUBLIC_INTERFACE
    @classmethod
    def parse(cls, term: str) -> "OrderBy":
        """Parse "field" or "-field" (descending)."""
        if term.startswith("-"):
            return cls(term[1:], descending=True)
        return cls(term)

