from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import correlation_scope


CORRELATION_HEADER = "x-correlation-id"
_ACCEPTED = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def normalize_correlation_id(raw: str | bytes | None) -> str | None:
    """Return the caller's id if it is short printable ASCII, else ``None``."""
    if isinstance(raw, bytes):
        raw = raw.decode("latin-1")
    candidate = (raw or "").strip()
    return candidate if _ACCEPTED.match(candidate) else None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = normalize_correlation_id(request.headers.get(CORRELATION_HEADER)) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        with correlation_scope(correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
