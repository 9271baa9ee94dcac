from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from app.platform.security.context import Principal
from app.platform.security.ownership import ResourceType, normalize_ref, normalize_refs, read_field
from app.platform.security.roles import Role, has_permission


@dataclass(slots=True, frozen=True)
class Eq:
    field: str
    value: Any

    def matches(self, record: Any) -> bool:
        return _comparable(read_field(record, self.field)) == _comparable(self.value)


@dataclass(slots=True, frozen=True)
class Contains:
    """Membership of ``value`` in a multi-valued relation such as meeting attendees."""

    field: str
    value: Any

    def matches(self, record: Any) -> bool:
        return normalize_ref(self.value) in normalize_refs(read_field(record, self.field))


@dataclass(slots=True, frozen=True)
class AnyOf:
    clauses: tuple[Predicate, ...]

    def matches(self, record: Any) -> bool:
        return any(clause.matches(record) for clause in self.clauses)


@dataclass(slots=True, frozen=True)
class AllOf:
    clauses: tuple[Predicate, ...]

    def matches(self, record: Any) -> bool:
        return all(clause.matches(record) for clause in self.clauses)


Predicate = Union[Eq, Contains, AnyOf, AllOf]

MATCH_ALL = AllOf(clauses=())


def _comparable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return normalize_ref(value)


def explicit_predicate(filters: Mapping[str, Any] | None) -> AllOf:
    """Equality clauses for every non-empty caller-supplied filter."""

    if not filters:
        return MATCH_ALL
    return AllOf(clauses=tuple(Eq(field=key, value=value) for key, value in filters.items() if value not in (None, "")))


def _with(base: AllOf, clause: Predicate) -> AllOf:
    return AllOf(clauses=(*base.clauses, clause))


def _without(filters: Mapping[str, Any] | None, *keys: str) -> dict[str, Any]:
    return {key: value for key, value in (filters or {}).items() if key not in keys}


def scope_filter(
    principal: Principal | None,
    resource_type: ResourceType | str,
    explicit_filters: Mapping[str, Any] | None = None,
) -> AllOf:
    """Narrow a list query to the records ``principal`` may see.

    Managers and admins keep their explicit filters (including an explicit
    ``assigned_to``/``actor_id``). Salesreps are pinned to their own records.
    Meetings are scoped by participation rather than role; an explicit
    ``user_id`` widens the query to that user's meetings.
    """

    variant = ResourceType(resource_type)
    is_manager = has_permission(principal, Role.MANAGER)

    if variant == ResourceType.CONTACT:
        if principal is None or is_manager:
            return explicit_predicate(explicit_filters)
        base = explicit_predicate(explicit_filters)
        return _with(
            base,
            AnyOf(clauses=(Eq("assigned_to", principal.id), Eq("created_by", principal.id))),
        )

    if variant == ResourceType.TASK:
        if is_manager:
            return explicit_predicate(explicit_filters)
        base = explicit_predicate(_without(explicit_filters, "assigned_to"))
        if principal is None:
            return base
        return _with(base, Eq("assigned_to", principal.id))

    if variant == ResourceType.MEETING:
        filters = dict(explicit_filters or {})
        user_id = filters.pop("user_id", None) or (principal.id if principal is not None else None)
        base = explicit_predicate(filters)
        if user_id is None:
            return base
        return _with(base, AnyOf(clauses=(Eq("organizer", user_id), Contains("attendees", user_id))))

    if variant == ResourceType.ACTIVITY:
        if is_manager or principal is None:
            return explicit_predicate(explicit_filters)
        base = explicit_predicate(_without(explicit_filters, "actor_id"))
        return _with(base, Eq("actor_id", principal.id))

    return explicit_predicate(explicit_filters)
