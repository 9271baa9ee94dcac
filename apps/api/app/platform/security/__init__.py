from app.platform.security.context import Principal
from app.platform.security.errors import (
    AuthorizationError,
    ForbiddenError,
    NotAuthenticatedError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from app.platform.security.ownership import (
    Ownership,
    ResourceType,
    UndeclaredOwnershipError,
    is_any_owner,
    is_owner,
    normalize_ref,
)
from app.platform.security.policies import AccessDecision, Operation, authorize, decide
from app.platform.security.redaction import redact
from app.platform.security.roles import Role, has_permission, rank
from app.platform.security.scoping import AllOf, AnyOf, Contains, Eq, Predicate, scope_filter

__all__ = [
    "AccessDecision",
    "AllOf",
    "AnyOf",
    "AuthorizationError",
    "Contains",
    "Eq",
    "ForbiddenError",
    "NotAuthenticatedError",
    "NotFoundError",
    "Operation",
    "Ownership",
    "PersistenceError",
    "Predicate",
    "Principal",
    "ResourceType",
    "Role",
    "ServiceError",
    "UndeclaredOwnershipError",
    "ValidationError",
    "authorize",
    "decide",
    "has_permission",
    "is_any_owner",
    "is_owner",
    "normalize_ref",
    "rank",
    "redact",
    "scope_filter",
]
