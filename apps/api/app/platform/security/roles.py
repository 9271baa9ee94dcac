from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.platform.security.context import Principal


class Role(StrEnum):
    SALESREP = "salesrep"
    MANAGER = "manager"
    ADMIN = "admin"


_ROLE_RANK: dict[Role, int] = {
    Role.SALESREP: 0,
    Role.MANAGER: 1,
    Role.ADMIN: 2,
}


def rank(role: Role | str) -> int:
    """Position of ``role`` in the salesrep < manager < admin order."""

    return _ROLE_RANK[Role(role)]


def has_permission(principal: Principal | None, min_role: Role | str) -> bool:
    """Return True when the principal's role is at least ``min_role``.

    Activity status is not consulted here; inactive users never become a
    principal in the first place.
    """

    if principal is None:
        return False
    return rank(principal.role) >= rank(min_role)


def is_admin(principal: Principal | None) -> bool:
    return principal is not None and Role(principal.role) == Role.ADMIN
