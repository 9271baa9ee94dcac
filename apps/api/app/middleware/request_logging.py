from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, route_template


logger = logging.getLogger("app.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` line and one metrics sample per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error("http.error", exc_info=True, extra=self._finish(request, 500, started))
            raise

        fields = self._finish(request, response.status_code, started)
        if response.status_code >= 500:
            logger.warning("http.request", extra=fields)
        else:
            logger.info("http.request", extra=fields)
        return response

    @staticmethod
    def _finish(request: Request, status_code: int, started: float) -> dict[str, object]:
        elapsed = time.perf_counter() - started
        # Resolved after the call so the router has stored the matched route in the scope.
        path = route_template(request)
        observe_http_request(method=request.method, path=path, status=status_code, duration=elapsed)
        return {
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(elapsed * 1000, 2),
            "principal_id": getattr(request.state, "principal_id", None),
        }
