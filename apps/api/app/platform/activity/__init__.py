from app.platform.activity.entries import ActivityEntry, ActivityType
from app.platform.activity.service import (
    ActivityRecorder,
    activity_recorder,
    activity_service,
    build_entry,
    classify_update,
    describe,
    display_name,
)
from app.platform.activity.sinks import (
    AuditSink,
    DbAuditSink,
    InMemoryAuditSink,
    configure_audit_sink,
    get_audit_sink,
    set_audit_sink,
)

__all__ = [
    "ActivityEntry",
    "ActivityRecorder",
    "ActivityType",
    "AuditSink",
    "DbAuditSink",
    "InMemoryAuditSink",
    "activity_recorder",
    "activity_service",
    "build_entry",
    "configure_audit_sink",
    "classify_update",
    "describe",
    "display_name",
    "get_audit_sink",
    "set_audit_sink",
]
