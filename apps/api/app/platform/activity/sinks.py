from __future__ import annotations

from threading import Lock
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.core.database import SessionLocal
from app.platform.activity.entries import ActivityEntry, ActivityType
from app.platform.activity.models import ActivityLog
from app.platform.security.repository import BaseRepository
from app.platform.security.scoping import Predicate


class AuditSink(Protocol):
    """Append target for activity entries, with the read side used by the activity feed."""

    def append(self, entry: ActivityEntry) -> None:
        ...

    def query(self, predicate: Predicate, limit: int) -> list[ActivityEntry]:
        ...


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.entries: list[ActivityEntry] = []
        self._lock = Lock()

    def append(self, entry: ActivityEntry) -> None:
        with self._lock:
            self.entries.append(entry)

    def query(self, predicate: Predicate, limit: int) -> list[ActivityEntry]:
        with self._lock:
            matched = [entry for entry in self.entries if predicate.matches(entry)]
        matched.sort(key=lambda entry: entry.timestamp, reverse=True)
        return matched[:limit]

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()


class ActivityLogRepository(BaseRepository):
    resource = "activity"
    filter_clauses = {
        "entity_type": lambda value: ActivityLog.entity_type == str(value),
        "entity_id": lambda value: ActivityLog.entity_id == str(value),
        "actor_id": lambda value: ActivityLog.actor_id == str(value),
        "type": lambda value: ActivityLog.type == str(value),
    }


class DbAuditSink:
    """Writes each entry in its own short-lived session, independent of the request session."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal
        self._repository = ActivityLogRepository()

    def append(self, entry: ActivityEntry) -> None:
        with self._session_factory() as session:
            session.add(
                ActivityLog(
                    type=entry.type.value,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    actor_id=entry.actor_id,
                    actor_name=entry.actor_name,
                    description=entry.description,
                    event_metadata=dict(entry.metadata) if entry.metadata is not None else None,
                    correlation_id=entry.correlation_id,
                    created_at=entry.timestamp,
                )
            )
            session.commit()

    def query(self, predicate: Predicate, limit: int) -> list[ActivityEntry]:
        stmt = self._repository.apply_scope_query(select(ActivityLog), predicate)
        stmt = stmt.order_by(ActivityLog.created_at.desc()).limit(limit)
        with self._session_factory() as session:
            rows = session.scalars(stmt).all()
        return [
            ActivityEntry(
                type=ActivityType(row.type),
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                actor_id=row.actor_id,
                actor_name=row.actor_name,
                description=row.description,
                metadata=row.event_metadata,
                timestamp=row.created_at,
                correlation_id=row.correlation_id,
            )
            for row in rows
        ]


_AUDIT_SINK: AuditSink = InMemoryAuditSink()
_SINK_LOCK = Lock()


def get_audit_sink() -> AuditSink:
    """Get the active audit sink instance."""

    return _AUDIT_SINK


def set_audit_sink(sink: AuditSink) -> None:
    """Set the active audit sink instance."""

    global _AUDIT_SINK
    with _SINK_LOCK:
        _AUDIT_SINK = sink


def configure_audit_sink(choice: str, app_env: str) -> AuditSink:
    """Install the sink named by the ``activity_sink`` setting and return it."""

    resolved = choice.lower()
    if resolved == "auto":
        resolved = "db" if app_env.lower() in {"prod", "production"} else "memory"
    sink: AuditSink = DbAuditSink() if resolved == "db" else InMemoryAuditSink()
    set_audit_sink(sink)
    return sink
