from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from app.metrics import observe_authz_decision
from app.platform.security.context import Principal
from app.platform.security.errors import ForbiddenError, NotAuthenticatedError
from app.platform.security.ownership import Ownership, ResourceType, is_owner, normalize_ref, read_field
from app.platform.security.roles import Role, has_permission


logger = logging.getLogger("app.security")


class Operation(StrEnum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CHANGE_PASSWORD = "change_password"


NOT_AUTHENTICATED = "Not authenticated"
INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
ONLY_ADMINS_CREATE_USERS = "Only admins can create users"
ONLY_ADMINS_UPDATE_USERS = "Only admins can update other users"
ONLY_ADMINS_DELETE_USERS = "Only admins can delete users"
CANNOT_DELETE_SELF = "Cannot delete your own account"
ONLY_OWN_PASSWORD = "You can only change your own password"


@dataclass(slots=True, frozen=True)
class AccessDecision:
    allow: bool
    reason: str
    status_code: int | None = None


@dataclass(slots=True, frozen=True)
class Guard:
    """Extra refusal applied after the role/ownership grant succeeded."""

    refuses: Callable[[Principal, Any], bool]
    message: str
    status_code: int = 403


@dataclass(slots=True, frozen=True)
class AccessRule:
    """One row of the policy table.

    With neither ``min_role`` nor ``ownerships`` set, any principal that
    passes the authentication requirement is allowed. Otherwise the principal
    needs the minimum role or one of the listed ownership relations.
    """

    requires_auth: bool = True
    min_role: Role | None = None
    ownerships: tuple[Ownership, ...] = ()
    deny_message: str = INSUFFICIENT_PERMISSIONS
    guards: tuple[Guard, ...] = ()

    @property
    def is_restricted(self) -> bool:
        return self.min_role is not None or bool(self.ownerships)


def _targets_self(principal: Principal, resource: Any) -> bool:
    return normalize_ref(read_field(resource, "id")) == principal.id


_AUTHENTICATED = AccessRule()
_MANAGER_OR_OWNER_CONTACT = AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.ASSIGNEE, Ownership.CREATOR))

POLICY_TABLE: dict[tuple[ResourceType, Operation], AccessRule] = {
    (ResourceType.CONTACT, Operation.LIST): AccessRule(requires_auth=False),
    (ResourceType.CONTACT, Operation.READ): AccessRule(
        requires_auth=False,
        min_role=Role.MANAGER,
        ownerships=(Ownership.ASSIGNEE, Ownership.CREATOR),
    ),
    (ResourceType.CONTACT, Operation.CREATE): _AUTHENTICATED,
    (ResourceType.CONTACT, Operation.UPDATE): _MANAGER_OR_OWNER_CONTACT,
    (ResourceType.CONTACT, Operation.DELETE): _MANAGER_OR_OWNER_CONTACT,
    (ResourceType.TASK, Operation.LIST): _AUTHENTICATED,
    (ResourceType.TASK, Operation.CREATE): _AUTHENTICATED,
    (ResourceType.TASK, Operation.READ): AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.ASSIGNEE,)),
    (ResourceType.TASK, Operation.UPDATE): AccessRule(
        min_role=Role.MANAGER,
        ownerships=(Ownership.ASSIGNEE, Ownership.CREATOR),
    ),
    (ResourceType.TASK, Operation.DELETE): AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.CREATOR,)),
    (ResourceType.MEETING, Operation.LIST): _AUTHENTICATED,
    (ResourceType.MEETING, Operation.CREATE): _AUTHENTICATED,
    (ResourceType.MEETING, Operation.READ): AccessRule(
        min_role=Role.MANAGER,
        ownerships=(Ownership.ORGANIZER, Ownership.ATTENDEE),
    ),
    (ResourceType.MEETING, Operation.UPDATE): AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.ORGANIZER,)),
    (ResourceType.MEETING, Operation.DELETE): AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.ORGANIZER,)),
    (ResourceType.DOCUMENT, Operation.LIST): _AUTHENTICATED,
    (ResourceType.DOCUMENT, Operation.CREATE): _AUTHENTICATED,
    (ResourceType.DOCUMENT, Operation.READ): _AUTHENTICATED,
    (ResourceType.DOCUMENT, Operation.DELETE): AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.UPLOADER,)),
    (ResourceType.USER, Operation.LIST): AccessRule(min_role=Role.MANAGER),
    (ResourceType.USER, Operation.CREATE): AccessRule(min_role=Role.ADMIN, deny_message=ONLY_ADMINS_CREATE_USERS),
    (ResourceType.USER, Operation.READ): AccessRule(min_role=Role.MANAGER, ownerships=(Ownership.SELF,)),
    (ResourceType.USER, Operation.UPDATE): AccessRule(
        min_role=Role.ADMIN,
        ownerships=(Ownership.SELF,),
        deny_message=ONLY_ADMINS_UPDATE_USERS,
    ),
    (ResourceType.USER, Operation.DELETE): AccessRule(
        min_role=Role.ADMIN,
        deny_message=ONLY_ADMINS_DELETE_USERS,
        guards=(Guard(refuses=_targets_self, message=CANNOT_DELETE_SELF, status_code=400),),
    ),
    (ResourceType.USER, Operation.CHANGE_PASSWORD): AccessRule(
        ownerships=(Ownership.SELF,),
        deny_message=ONLY_OWN_PASSWORD,
    ),
    (ResourceType.ACTIVITY, Operation.LIST): _AUTHENTICATED,
}

for _variant in (ResourceType.COMPANY, ResourceType.CASE):
    for _operation in (Operation.LIST, Operation.READ, Operation.CREATE, Operation.UPDATE, Operation.DELETE):
        POLICY_TABLE[(_variant, _operation)] = _AUTHENTICATED


def get_rule(resource_type: ResourceType | str, operation: Operation | str) -> AccessRule | None:
    return POLICY_TABLE.get((ResourceType(resource_type), Operation(operation)))


def decide(
    principal: Principal | None,
    resource_type: ResourceType | str,
    operation: Operation | str,
    resource: Any = None,
) -> AccessDecision:
    """Evaluate the policy table for one (resource type, operation) pair.

    ``resource`` is the fetched target for single-item operations and ``None``
    for list/create, which are decided against the type alone.
    """

    variant = ResourceType(resource_type)
    rule = get_rule(variant, operation)
    if rule is None:
        return AccessDecision(allow=False, reason=INSUFFICIENT_PERMISSIONS, status_code=403)

    if principal is None:
        if rule.requires_auth:
            return AccessDecision(allow=False, reason=NOT_AUTHENTICATED, status_code=401)
        return AccessDecision(allow=True, reason="anonymous")

    reason = "authenticated"
    if rule.is_restricted:
        if rule.min_role is not None and has_permission(principal, rule.min_role):
            reason = f"role:{rule.min_role}"
        else:
            owned = next(
                (ownership for ownership in rule.ownerships if is_owner(principal, resource, variant, ownership)),
                None,
            )
            if owned is None:
                return AccessDecision(allow=False, reason=rule.deny_message, status_code=403)
            reason = f"owner:{owned}"

    for guard in rule.guards:
        if guard.refuses(principal, resource):
            return AccessDecision(allow=False, reason=guard.message, status_code=guard.status_code)

    return AccessDecision(allow=True, reason=reason)


def authorize(
    principal: Principal | None,
    resource_type: ResourceType | str,
    operation: Operation | str,
    resource: Any = None,
) -> AccessDecision:
    """Decide and raise on denial; returns the allowing decision otherwise."""

    decision = decide(principal, resource_type, operation, resource)
    observe_authz_decision(resource=str(resource_type), operation=str(operation), allowed=decision.allow)
    if decision.allow:
        return decision

    logger.info(
        "authz.denied",
        extra={
            "resource": str(resource_type),
            "operation": str(operation),
            "principal_id": principal.id if principal is not None else None,
            "reason": decision.reason,
            "status_code": decision.status_code,
        },
    )
    if decision.status_code == 401:
        raise NotAuthenticatedError(decision.reason)
    raise ForbiddenError(
        decision.reason,
        status_code=decision.status_code or 403,
        resource=str(resource_type),
        operation=str(operation),
    )
