from __future__ import annotations

import dataclasses
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import BackgroundTasks
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base
from app.platform.activity import (
    ActivityEntry,
    ActivityType,
    DbAuditSink,
    InMemoryAuditSink,
    activity_recorder,
    activity_service,
    build_entry,
    classify_update,
    configure_audit_sink,
    get_audit_sink,
    set_audit_sink,
)
from app.platform.activity.models import ActivityLog
from app.platform.security.context import Principal
from app.platform.security.errors import NotAuthenticatedError
from app.platform.security.ownership import ResourceType
from app.platform.security.roles import Role
from app.platform.security.scoping import scope_filter


REP = Principal(id="rep-1", role=Role.SALESREP, first_name="Rita", last_name="Rep")
OTHER_REP = Principal(id="rep-2", role=Role.SALESREP, first_name="Sam", last_name="Seller")
MANAGER = Principal(id="mgr-1", role=Role.MANAGER, first_name="Mia", last_name="Manager")


class ExplodingSink:
    def append(self, entry: ActivityEntry) -> None:
        raise RuntimeError("sink offline")

    def query(self, predicate, limit):  # type: ignore[no-untyped-def]
        return []


@pytest.fixture(autouse=True)
def memory_sink() -> Generator[InMemoryAuditSink, None, None]:
    previous = get_audit_sink()
    sink = InMemoryAuditSink()
    set_audit_sink(sink)
    get_settings.cache_clear()
    yield sink
    set_audit_sink(previous)
    get_settings.cache_clear()


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        Base.metadata.drop_all(bind=engine)


def _entry(actor: Principal, entity_id: str, *, minutes_ago: int = 0) -> ActivityEntry:
    return ActivityEntry(
        type=ActivityType.CREATED,
        entity_type="contact",
        entity_id=entity_id,
        actor_id=actor.id,
        actor_name=actor.display_name,
        description=f"Created contact: {entity_id}",
        timestamp=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )


def test_build_entry_formats_description_and_actor() -> None:
    entry = build_entry(
        REP,
        ActivityType.CREATED,
        entity_type="contact",
        entity_id="c1",
        entity_label="contact",
        name="Jane Doe",
    )

    assert entry.description == "Created contact: Jane Doe"
    assert entry.actor_id == "rep-1"
    assert entry.actor_name == "Rita Rep"
    assert entry.metadata is None

    scheduled = build_entry(
        REP,
        ActivityType.CREATED,
        entity_type="contact",
        entity_id="c1",
        entity_label="meeting",
        name="Kickoff",
        verb="Scheduled",
        metadata={"meeting_id": "m1"},
    )
    assert scheduled.description == "Scheduled meeting: Kickoff"
    assert scheduled.metadata == {"meeting_id": "m1"}


def test_entries_are_immutable() -> None:
    entry = build_entry(
        REP,
        ActivityType.UPDATED,
        entity_type="company",
        entity_id="co1",
        entity_label="company",
        name="Acme",
        metadata={"changed": True},
    )

    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.description = "rewritten"  # type: ignore[misc]
    with pytest.raises(TypeError):
        entry.metadata["changed"] = False  # type: ignore[index]


def test_classify_update_prefers_reassignment() -> None:
    before = {"assigned_to": {"id": "rep-1"}, "status": "pending"}

    assigned = classify_update(ResourceType.TASK, before, {"assigned_to": "rep-2", "status": "completed"})
    assert assigned.type == ActivityType.ASSIGNED
    assert assigned.metadata == {"assigned_to": "rep-2"}

    completed = classify_update(ResourceType.TASK, before, {"status": "completed"})
    assert completed.type == ActivityType.UPDATED
    assert completed.verb == "Completed"

    same_assignee = classify_update(ResourceType.CONTACT, before, {"assigned_to": "rep-1", "notes": "x"})
    assert same_assignee.type == ActivityType.UPDATED
    assert same_assignee.verb == "Updated"


def test_record_swallows_sink_failures_and_counts_them() -> None:
    set_audit_sink(ExplodingSink())
    labels = {"entity_type": "contact"}
    before = REGISTRY.get_sample_value("activity_record_failures_total", labels) or 0.0

    activity_recorder.record(_entry(REP, "c1"))

    after = REGISTRY.get_sample_value("activity_record_failures_total", labels) or 0.0
    assert after == before + 1


def test_dispatch_defers_to_background_tasks(memory_sink: InMemoryAuditSink) -> None:
    background_tasks = BackgroundTasks()

    activity_recorder.dispatch(_entry(REP, "c1"), background_tasks)

    assert memory_sink.entries == []
    assert len(background_tasks.tasks) == 1


def test_dispatch_without_background_tasks_records_inline(memory_sink: InMemoryAuditSink) -> None:
    activity_recorder.dispatch(_entry(REP, "c1"))

    assert [entry.entity_id for entry in memory_sink.entries] == ["c1"]


def test_activity_feed_scopes_salesreps_to_their_own_entries(memory_sink: InMemoryAuditSink) -> None:
    memory_sink.append(_entry(REP, "c1", minutes_ago=5))
    memory_sink.append(_entry(OTHER_REP, "c2", minutes_ago=3))
    memory_sink.append(_entry(REP, "c3", minutes_ago=1))

    own = activity_service.list_activities(REP, {"actor_id": "rep-2"})
    assert [entry.entity_id for entry in own] == ["c3", "c1"]

    everyone = activity_service.list_activities(MANAGER, {})
    assert [entry.entity_id for entry in everyone] == ["c3", "c2", "c1"]

    limited = activity_service.list_activities(MANAGER, {}, limit=1)
    assert [entry.entity_id for entry in limited] == ["c3"]

    with pytest.raises(NotAuthenticatedError):
        activity_service.list_activities(None, {})


def test_db_sink_appends_and_queries(session_factory: sessionmaker[Session]) -> None:
    sink = DbAuditSink(session_factory)
    sink.append(_entry(REP, "c1", minutes_ago=10))
    sink.append(
        build_entry(
            OTHER_REP,
            ActivityType.ASSIGNED,
            entity_type="user",
            entity_id="rep-1",
            entity_label="task",
            name="Follow up",
            metadata={"assigned_to": "rep-1", "task_id": "t1"},
        )
    )

    with session_factory() as session:
        assert session.query(ActivityLog).count() == 2

    mine = sink.query(scope_filter(REP, ResourceType.ACTIVITY), 50)
    assert [entry.entity_id for entry in mine] == ["c1"]

    assigned = sink.query(scope_filter(MANAGER, ResourceType.ACTIVITY, {"entity_type": "user"}), 50)
    assert len(assigned) == 1
    assert assigned[0].type == ActivityType.ASSIGNED
    assert assigned[0].description == "Assigned task: Follow up"
    assert assigned[0].metadata == {"assigned_to": "rep-1", "task_id": "t1"}


def test_configure_audit_sink_resolves_auto_by_environment() -> None:
    assert isinstance(configure_audit_sink("auto", "local"), InMemoryAuditSink)
    assert isinstance(configure_audit_sink("auto", "production"), DbAuditSink)
    assert isinstance(configure_audit_sink("memory", "production"), InMemoryAuditSink)
    assert isinstance(get_audit_sink(), InMemoryAuditSink)


def test_entry_survives_serialization_for_the_worker() -> None:
    entry = build_entry(
        REP,
        ActivityType.DELETED,
        entity_type="contact",
        entity_id="c9",
        entity_label="contact",
        name="Jane Doe",
    )

    restored = ActivityEntry.from_dict(entry.to_dict())

    assert restored == entry


def test_worker_task_records_serialized_entry(memory_sink: InMemoryAuditSink) -> None:
    from app.core.celery_app import record_activity_task

    entry = build_entry(
        REP,
        ActivityType.CREATED,
        entity_type="company",
        entity_id="co1",
        entity_label="company",
        name="Acme",
    )

    record_activity_task(entry.to_dict())

    assert [stored.description for stored in memory_sink.entries] == ["Created company: Acme"]


def test_celery_dispatch_enqueues_instead_of_recording(
    memory_sink: InMemoryAuditSink,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from app.core.celery_app import record_activity_task

    sent: list[dict] = []
    monkeypatch.setenv("ACTIVITY_DISPATCH", "celery")
    monkeypatch.setattr(record_activity_task, "delay", lambda payload: sent.append(payload))
    get_settings.cache_clear()

    activity_recorder.dispatch(_entry(REP, "c1"), BackgroundTasks())

    assert memory_sink.entries == []
    assert [payload["entity_id"] for payload in sent] == ["c1"]


def test_worker_task_binds_the_entry_correlation_id() -> None:
    from app.context import get_correlation_id
    from app.core.celery_app import record_activity_task

    class CorrelationCapturingSink(InMemoryAuditSink):
        def __init__(self) -> None:
            super().__init__()
            self.bound: list[str | None] = []

        def append(self, entry: ActivityEntry) -> None:
            self.bound.append(get_correlation_id())
            super().append(entry)

    sink = CorrelationCapturingSink()
    set_audit_sink(sink)
    payload = dataclasses.replace(_entry(REP, "c1"), correlation_id="corr-worker-1").to_dict()

    record_activity_task(payload)

    assert sink.bound == ["corr-worker-1"]
    assert sink.entries[0].correlation_id == "corr-worker-1"
    assert get_correlation_id() is None
