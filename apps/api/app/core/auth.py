from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends
from jose import JWTError, jwt
from starlette.requests import Request

from app.context import bind_principal_id
from app.core.config import get_settings
from app.platform.security.context import Principal
from app.platform.security.errors import NotAuthenticatedError
from app.platform.security.roles import Role


def generate_token(principal: Principal) -> str:
    settings = get_settings()
    claims: dict[str, Any] = {
        "sub": principal.id,
        "role": principal.role.value,
        "first_name": principal.first_name,
        "last_name": principal.last_name,
        "email": principal.email,
        "is_active": principal.is_active,
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def principal_from_token(token: str) -> Principal | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    try:
        role = Role(str(payload.get("role", "")))
    except ValueError:
        return None
    if not subject:
        return None

    principal = Principal(
        id=str(subject),
        role=role,
        is_active=bool(payload.get("is_active", True)),
        first_name=str(payload.get("first_name") or ""),
        last_name=str(payload.get("last_name") or ""),
        email=payload.get("email"),
    )
    # Deactivated accounts resolve to "no session" rather than a lower rank.
    if not principal.is_active:
        return None
    return principal


def _extract_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.replace("Bearer ", "", 1)
    return request.cookies.get(get_settings().auth_cookie_name, "")


async def get_current_principal(request: Request) -> Principal | None:
    token = _extract_token(request)
    if not token:
        return None
    principal = principal_from_token(token)
    if principal is not None:
        request.state.principal_id = principal.id
        bind_principal_id(principal.id)
    return principal


async def require_principal(principal: Principal | None = Depends(get_current_principal)) -> Principal:
    if principal is None:
        raise NotAuthenticatedError()
    return principal
