from __future__ import annotations


class ServiceError(Exception):
    """Base for errors that map onto a response status and a caller-visible message."""

    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AuthorizationError(ServiceError):
    """Base authorization error for policy enforcement failures."""

    status_code = 403


class NotAuthenticatedError(AuthorizationError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class ForbiddenError(AuthorizationError):
    def __init__(self, message: str, *, status_code: int = 403, resource: str | None = None, operation: str | None = None) -> None:
        self.resource = resource
        self.operation = operation
        super().__init__(message, status_code=status_code)


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, resource_label: str) -> None:
        self.resource_label = resource_label
        super().__init__(f"{resource_label} not found")


class ValidationError(ServiceError):
    status_code = 400


class PersistenceError(ServiceError):
    """Any other failure from the persistence layer; the message is passed through verbatim."""

    status_code = 400
