from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql import ColumnElement, Select

from app.platform.security.errors import ValidationError
from app.platform.security.ownership import normalize_ref
from app.platform.security.scoping import AllOf, AnyOf, Contains, Eq, Predicate


ClauseFactory = Callable[[Any], ColumnElement[bool]]


def coerce_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    raw = normalize_ref(value)
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid id: {raw}")


def compile_predicate(predicate: Predicate, clauses: Mapping[str, ClauseFactory]) -> ColumnElement[bool]:
    """Translate a scoping predicate into a SQLAlchemy boolean clause."""

    if isinstance(predicate, AllOf):
        if not predicate.clauses:
            return true()
        return and_(*(compile_predicate(clause, clauses) for clause in predicate.clauses))
    if isinstance(predicate, AnyOf):
        if not predicate.clauses:
            return false()
        return or_(*(compile_predicate(clause, clauses) for clause in predicate.clauses))
    if isinstance(predicate, (Eq, Contains)):
        factory = clauses.get(predicate.field)
        if factory is None:
            raise ValidationError(f"Unsupported filter: {predicate.field}")
        return factory(predicate.value)
    raise TypeError(f"Unknown predicate {predicate!r}")


class BaseRepository:
    """Shared list-scoping plumbing for resource repositories.

    Subclasses declare ``filter_clauses``: one clause factory per filterable
    field, covering every field the query scoper can emit for the resource.
    """

    resource = ""
    filter_clauses: Mapping[str, ClauseFactory] = {}

    def apply_scope_query(self, query: Select[Any], predicate: Predicate) -> Select[Any]:
        return query.where(compile_predicate(predicate, self.filter_clauses))
