from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import BackgroundTasks
from opentelemetry import trace

from app.context import get_correlation_id
from app.core.config import get_settings
from app.metrics import observe_activity_failure, observe_activity_recorded
from app.platform.activity.entries import ActivityEntry, ActivityType
from app.platform.activity.sinks import get_audit_sink
from app.platform.security.context import Principal
from app.platform.security.ownership import ResourceType, normalize_ref, read_field
from app.platform.security.policies import Operation, authorize
from app.platform.security.scoping import scope_filter


logger = logging.getLogger("app.activity")
tracer = trace.get_tracer("app.activity")

_DEFAULT_VERBS = {
    ActivityType.CREATED: "Created",
    ActivityType.UPDATED: "Updated",
    ActivityType.DELETED: "Deleted",
    ActivityType.ASSIGNED: "Assigned",
}


def describe(verb: str, entity_label: str, name: str) -> str:
    return f"{verb} {entity_label}: {name}"


def display_name(resource_type: ResourceType | str, record: Any) -> str:
    variant = ResourceType(resource_type)
    if variant in {ResourceType.CONTACT, ResourceType.USER}:
        first = read_field(record, "first_name") or ""
        last = read_field(record, "last_name") or ""
        return f"{first} {last}".strip()
    if variant == ResourceType.COMPANY:
        return str(read_field(record, "name") or "")
    if variant == ResourceType.DOCUMENT:
        return str(read_field(record, "original_name") or "")
    return str(read_field(record, "title") or "")


@dataclass(slots=True, frozen=True)
class UpdateClassification:
    type: ActivityType
    verb: str
    metadata: dict[str, Any] | None = None


def classify_update(resource_type: ResourceType | str, before: Any, changes: Mapping[str, Any]) -> UpdateClassification:
    """Derive the activity type for an update from what it changed.

    Reassignment wins over everything else. A task moving into ``completed``
    stays an ``updated`` entry and only changes the phrasing.
    """

    new_assignee = normalize_ref(changes.get("assigned_to"))
    if new_assignee is not None and new_assignee != normalize_ref(read_field(before, "assigned_to")):
        return UpdateClassification(ActivityType.ASSIGNED, "Assigned", {"assigned_to": new_assignee})

    if (
        ResourceType(resource_type) == ResourceType.TASK
        and changes.get("status") == "completed"
        and read_field(before, "status") != "completed"
    ):
        return UpdateClassification(ActivityType.UPDATED, "Completed")

    return UpdateClassification(ActivityType.UPDATED, "Updated")


def build_entry(
    actor: Principal,
    activity_type: ActivityType,
    *,
    entity_type: str,
    entity_id: Any,
    entity_label: str,
    name: str,
    verb: str | None = None,
    metadata: Mapping[str, Any] | None = None,
    description: str | None = None,
) -> ActivityEntry:
    return ActivityEntry(
        type=activity_type,
        entity_type=entity_type,
        entity_id=normalize_ref(entity_id) or "",
        actor_id=actor.id,
        actor_name=actor.display_name,
        description=description or describe(verb or _DEFAULT_VERBS[activity_type], entity_label, name),
        metadata=metadata,
        correlation_id=get_correlation_id(),
    )


class ActivityRecorder:
    """Best-effort audit writer.

    ``dispatch`` is called once per committed mutation and hands the write off
    so the caller never waits on it. ``record`` swallows sink failures into
    the log and a failure counter; nothing is retried.
    """

    def record(self, entry: ActivityEntry) -> None:
        with tracer.start_as_current_span("activity.record") as span:
            span.set_attribute("activity.type", entry.type.value)
            span.set_attribute("activity.entity_type", entry.entity_type)
            span.set_attribute("enduser.id", entry.actor_id)
            try:
                get_audit_sink().append(entry)
            except Exception as exc:
                span.record_exception(exc)
                observe_activity_failure(entry.entity_type)
                logger.exception(
                    "activity.record_failed",
                    extra={
                        "activity_type": entry.type.value,
                        "entity_type": entry.entity_type,
                        "entity_id": entry.entity_id,
                        "error": str(exc),
                    },
                )
                return
        observe_activity_recorded(entry.type.value)

    def dispatch(self, entry: ActivityEntry, background_tasks: BackgroundTasks | None = None) -> None:
        if get_settings().activity_dispatch.lower() == "celery":
            self._enqueue(entry)
            return
        if background_tasks is not None:
            background_tasks.add_task(self.record, entry)
            return
        self.record(entry)

    def _enqueue(self, entry: ActivityEntry) -> None:
        from app.core.celery_app import record_activity_task

        try:
            record_activity_task.delay(entry.to_dict())
        except Exception as exc:
            observe_activity_failure(entry.entity_type)
            logger.exception(
                "activity.enqueue_failed",
                extra={"entity_type": entry.entity_type, "entity_id": entry.entity_id, "error": str(exc)},
            )


class ActivityService:
    def list_activities(
        self,
        principal: Principal | None,
        filters: Mapping[str, Any],
        limit: int | None = None,
    ) -> list[ActivityEntry]:
        authorize(principal, ResourceType.ACTIVITY, Operation.LIST)
        resolved_limit = limit if limit and limit > 0 else get_settings().activities_default_limit
        predicate = scope_filter(principal, ResourceType.ACTIVITY, filters)
        return get_audit_sink().query(predicate, resolved_limit)


activity_recorder = ActivityRecorder()
activity_service = ActivityService()
