from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

authz_decisions_total = Counter(
    "authz_decisions_total",
    "Access decisions by resource, operation and outcome",
    ["resource", "operation", "outcome"],
)

redacted_fields_count = Counter(
    "redacted_fields_count",
    "Total payload fields dropped by the field redactor",
    ["resource"],
)

activity_records_total = Counter(
    "activity_records_total",
    "Activity entries appended to the audit sink",
    ["type"],
)

activity_record_failures_total = Counter(
    "activity_record_failures_total",
    "Activity entries that failed to reach the audit sink",
    ["entity_type"],
)


# Label paths by route template so every contact or task id shares one series.
_ROUTE_PARAM = re.compile(r"\{[^{}]+\}")
_RAW_UUID = re.compile(r"[0-9a-fA-F]{8}-(?:[0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}")


def route_template(request: Request) -> str:
    template = getattr(request.scope.get("route"), "path_format", None)
    if isinstance(template, str) and template:
        return _ROUTE_PARAM.sub("{id}", template)
    # Unmatched requests (404s, malformed ids) still collapse their uuids.
    return _RAW_UUID.sub("{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_authz_decision(resource: str, operation: str, allowed: bool) -> None:
    outcome = "allow" if allowed else "deny"
    authz_decisions_total.labels(resource=resource, operation=operation, outcome=outcome).inc()


def observe_redacted_fields(resource: str, count: int) -> None:
    if count > 0:
        redacted_fields_count.labels(resource=resource).inc(count)


def observe_activity_recorded(activity_type: str) -> None:
    activity_records_total.labels(type=activity_type).inc()


def observe_activity_failure(entity_type: str) -> None:
    activity_record_failures_total.labels(entity_type=entity_type).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
