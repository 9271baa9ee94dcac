from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id, log_context
from app.core.config import get_settings


# Only allowlisted extras reach the JSON line so request bodies and tokens never do.
_HTTP_FIELDS = frozenset({"method", "path", "status_code", "duration_ms"})
_SECURITY_FIELDS = frozenset({"resource", "operation", "reason", "dropped_fields"})
_ACTIVITY_FIELDS = frozenset({"entity_type", "entity_id", "activity_type"})
_EMITTED_FIELDS = _HTTP_FIELDS | _SECURITY_FIELDS | _ACTIVITY_FIELDS | {"error"}
_MAX_ERROR_CHARS = 500

_stock_factory = logging.getLogRecordFactory()


def _correlated_record(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _stock_factory(*args, **kwargs)
    if getattr(record, "correlation_id", None) is None:
        record.correlation_id = get_correlation_id()
    return record


class RequestContextFilter(logging.Filter):
    """Fills correlation and principal ids on records created before the factory was installed."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in log_context().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JsonLogFormatter(logging.Formatter):
    def __init__(self, service: str = "crm-api") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        fields = {key: value for key, value in vars(record).items() if key in _EMITTED_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_CHARS]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "service": self.service,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "principal_id": getattr(record, "principal_id", None),
                "fields": fields,
            },
            default=str,
        )


_configured = False


def configure_logging(level: str | None = None) -> None:
    """Route every logger through one stdout JSON handler. Later calls are no-ops."""
    global _configured
    if _configured:
        return

    settings = get_settings()
    resolved = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=settings.app_name))
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(resolved)
    logging.setLogRecordFactory(_correlated_record)
    _configured = True
