from app.platform.security.context import Principal
from app.platform.security.errors import AuthorizationError, NotFoundError, ServiceError
from app.platform.security.policies import AccessDecision, Operation, authorize, decide
from app.platform.security.redaction import redact
from app.platform.security.repository import BaseRepository
from app.platform.security.scoping import scope_filter

__all__ = [
    "AccessDecision",
    "AuthorizationError",
    "BaseRepository",
    "NotFoundError",
    "Operation",
    "Principal",
    "ServiceError",
    "authorize",
    "decide",
    "redact",
    "scope_filter",
]
