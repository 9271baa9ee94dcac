from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

# Both vars are bound per request by the middleware and the principal provider.
# Worker tasks rebind the correlation id carried on the serialized activity entry.
correlation_id_var: ContextVar[str | None] = ContextVar("crm_correlation_id", default=None)
principal_id_var: ContextVar[str | None] = ContextVar("crm_principal_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def bind_principal_id(principal_id: str | None) -> None:
    """Attach the authenticated user to the rest of the request.

    Not reset explicitly: the request task owns the context and discards it.
    """
    principal_id_var.set(principal_id)


def get_principal_id() -> str | None:
    return principal_id_var.get()


@contextmanager
def correlation_scope(correlation_id: str | None) -> Iterator[str | None]:
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


def log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "principal_id": get_principal_id()}
