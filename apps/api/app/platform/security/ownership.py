from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from app.platform.security.context import Principal


class ResourceType(StrEnum):
    CONTACT = "contact"
    COMPANY = "company"
    CASE = "case"
    TASK = "task"
    MEETING = "meeting"
    DOCUMENT = "document"
    USER = "user"
    ACTIVITY = "activity"


class Ownership(StrEnum):
    CREATOR = "creator"
    ASSIGNEE = "assignee"
    ORGANIZER = "organizer"
    ATTENDEE = "attendee"
    UPLOADER = "uploader"
    SELF = "self"


# Ownership relation -> record field, per variant. Variants missing here are role-only.
OWNERSHIP_FIELDS: dict[ResourceType, dict[Ownership, str]] = {
    ResourceType.CONTACT: {Ownership.CREATOR: "created_by", Ownership.ASSIGNEE: "assigned_to"},
    ResourceType.CASE: {Ownership.CREATOR: "created_by", Ownership.ASSIGNEE: "assigned_to"},
    ResourceType.COMPANY: {},
    ResourceType.TASK: {Ownership.CREATOR: "created_by", Ownership.ASSIGNEE: "assigned_to"},
    ResourceType.MEETING: {Ownership.ORGANIZER: "organizer", Ownership.ATTENDEE: "attendees"},
    ResourceType.DOCUMENT: {Ownership.UPLOADER: "uploaded_by"},
    ResourceType.USER: {Ownership.SELF: "id"},
}

_MULTI_VALUED = {Ownership.ATTENDEE}


class UndeclaredOwnershipError(ValueError):
    """Raised when an ownership check names a relation the variant does not declare."""

    def __init__(self, variant: ResourceType, ownership: Ownership) -> None:
        self.variant = variant
        self.ownership = ownership
        super().__init__(f"Resource '{variant}' does not declare ownership '{ownership}'")


def normalize_ref(ref: Any) -> str | None:
    """Reduce a bare id or a populated relation to a comparable string id."""

    if ref is None:
        return None
    if isinstance(ref, uuid.UUID):
        return str(ref)
    if isinstance(ref, str):
        return ref or None
    if isinstance(ref, Mapping):
        for key in ("id", "_id"):
            if ref.get(key) is not None:
                return normalize_ref(ref[key])
        return None
    nested = getattr(ref, "id", None)
    if nested is not None:
        return normalize_ref(nested)
    return str(ref)


def normalize_refs(refs: Iterable[Any] | None) -> list[str]:
    if not refs:
        return []
    return [value for value in (normalize_ref(item) for item in refs) if value is not None]


def ownership_field(variant: ResourceType | str, ownership: Ownership | str) -> str:
    resolved_variant = ResourceType(variant)
    resolved_ownership = Ownership(ownership)
    fields = OWNERSHIP_FIELDS.get(resolved_variant, {})
    if resolved_ownership not in fields:
        raise UndeclaredOwnershipError(resolved_variant, resolved_ownership)
    return fields[resolved_ownership]


def read_field(resource: Any, field_name: str) -> Any:
    if isinstance(resource, Mapping):
        return resource.get(field_name)
    return getattr(resource, field_name, None)


def is_owner(
    principal: Principal | None,
    resource: Any,
    variant: ResourceType | str,
    ownership: Ownership | str,
) -> bool:
    """Decide whether ``principal`` holds ``ownership`` over ``resource``.

    The field is looked up in the variant's declaration first, so a check
    against an undeclared relation fails loudly instead of silently denying.
    An absent reference never makes anyone an owner.
    """

    field_name = ownership_field(variant, ownership)
    if principal is None or resource is None:
        return False

    value = read_field(resource, field_name)
    if Ownership(ownership) in _MULTI_VALUED:
        return principal.id in normalize_refs(value)

    owner_id = normalize_ref(value)
    return owner_id is not None and owner_id == principal.id


def is_any_owner(
    principal: Principal | None,
    resource: Any,
    variant: ResourceType | str,
    *ownerships: Ownership | str,
) -> bool:
    return any(is_owner(principal, resource, variant, ownership) for ownership in ownerships)
