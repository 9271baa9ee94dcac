from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from app.core.auth import generate_token
from app.core.passwords import hash_password, verify_password
from app.crm.repositories import (
    REPOSITORIES,
    CRMRepository,
    MeetingRepository,
    case_repository,
    company_repository,
    contact_repository,
    document_repository,
    meeting_repository,
    task_repository,
    user_repository,
)
from app.crm.schemas import MeetingCreate, PasswordChange, UserCreate
from app.platform.activity import ActivityType, activity_recorder, build_entry, classify_update, display_name
from app.platform.security.context import Principal
from app.platform.security.errors import NotAuthenticatedError, NotFoundError, ValidationError
from app.platform.security.ownership import ResourceType, normalize_ref
from app.platform.security.policies import Operation, authorize
from app.platform.security.redaction import redact
from app.platform.security.repository import coerce_uuid
from app.platform.security.roles import Role
from app.platform.security.scoping import MATCH_ALL, scope_filter


logger = logging.getLogger("app.crm")

_RELATABLE = frozenset({ResourceType.CONTACT.value, ResourceType.COMPANY.value, ResourceType.CASE.value})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive values for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ResourceService:
    """CRUD pipeline shared by every resource handler.

    Each call authorizes first, scopes or fetches through the repository,
    and dispatches exactly one activity entry once a mutation is committed.
    """

    resource_type: ResourceType
    entity_label = ""
    not_found_label = ""
    repository: CRMRepository
    verbs: Mapping[ActivityType, str] = {}

    def authorize_actor(
        self,
        principal: Principal | None,
        operation: Operation,
        resource: Any = None,
    ) -> Principal:
        """Authorize a call that needs a known actor and return that actor."""

        authorize(principal, self.resource_type, operation, resource)
        if principal is None:
            raise NotAuthenticatedError()
        return principal

    def list(
        self,
        session: Session,
        principal: Principal | None,
        filters: Mapping[str, Any] | None = None,
        extra_clauses: tuple[Any, ...] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        authorize(principal, self.resource_type, Operation.LIST)
        predicate = scope_filter(principal, self.resource_type, filters)
        return self.repository.find(session, predicate, extra_clauses, limit)

    def get(self, session: Session, principal: Principal | None, entity_id: Any) -> dict[str, Any]:
        record = self._fetch_or_404(session, entity_id)
        authorize(principal, self.resource_type, Operation.READ, record)
        return record

    def create(
        self,
        session: Session,
        principal: Principal | None,
        payload: Mapping[str, Any],
        background_tasks: BackgroundTasks | None = None,
    ) -> dict[str, Any]:
        principal = self.authorize_actor(principal, Operation.CREATE)
        values = self.prepare_create(session, principal, dict(payload))
        record = self.repository.create(session, values)
        self.record_activity(
            principal,
            ActivityType.CREATED,
            record,
            metadata=self.created_metadata(record),
            background_tasks=background_tasks,
        )
        return record

    def update(
        self,
        session: Session,
        principal: Principal | None,
        entity_id: Any,
        payload: Mapping[str, Any],
        background_tasks: BackgroundTasks | None = None,
    ) -> dict[str, Any]:
        before = self._fetch_or_404(session, entity_id)
        principal = self.authorize_actor(principal, Operation.UPDATE, before)
        changes = self.prepare_update(session, principal, before, dict(payload))
        record = self.repository.update(session, entity_id, changes)
        if record is None:
            raise NotFoundError(self.not_found_label)

        classification = classify_update(self.resource_type, before, changes)
        self.record_activity(
            principal,
            classification.type,
            record,
            verb=classification.verb,
            metadata=classification.metadata,
            background_tasks=background_tasks,
        )
        return record

    def delete(
        self,
        session: Session,
        principal: Principal | None,
        entity_id: Any,
        background_tasks: BackgroundTasks | None = None,
    ) -> dict[str, Any]:
        before = self._fetch_or_404(session, entity_id)
        principal = self.authorize_actor(principal, Operation.DELETE, before)
        if self.repository.delete(session, entity_id) is None:
            raise NotFoundError(self.not_found_label)
        self.record_activity(principal, ActivityType.DELETED, before, background_tasks=background_tasks)
        return before

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def prepare_update(
        self,
        session: Session,
        principal: Principal,
        before: dict[str, Any],
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        return payload

    def created_metadata(self, record: Mapping[str, Any]) -> dict[str, Any] | None:
        return None

    def activity_target(
        self,
        record: Mapping[str, Any],
        metadata: Mapping[str, Any] | None,
    ) -> tuple[str, Any, Mapping[str, Any] | None]:
        """Entity the audit entry is filed under."""

        return self.resource_type.value, record["id"], metadata

    def record_activity(
        self,
        principal: Principal,
        activity_type: ActivityType,
        record: Mapping[str, Any],
        *,
        verb: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> None:
        entity_type, entity_id, entry_metadata = self.activity_target(record, metadata)
        if verb is None:
            verb = self.verbs.get(activity_type)
        entry = build_entry(
            principal,
            activity_type,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_label=self.entity_label,
            name=display_name(self.resource_type, record),
            verb=verb,
            metadata=entry_metadata,
        )
        activity_recorder.dispatch(entry, background_tasks)

    def _fetch_or_404(self, session: Session, entity_id: Any) -> dict[str, Any]:
        record = self.repository.fetch(session, entity_id)
        if record is None:
            raise NotFoundError(self.not_found_label)
        return record


class ContactService(ResourceService):
    resource_type = ResourceType.CONTACT
    entity_label = "contact"
    not_found_label = "Contact"
    repository = contact_repository

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        payload["created_by"] = principal.id
        payload["assigned_to"] = normalize_ref(payload.get("assigned_to")) or principal.id
        return payload


class CompanyService(ResourceService):
    resource_type = ResourceType.COMPANY
    entity_label = "company"
    not_found_label = "Company"
    repository = company_repository

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        payload["created_by"] = principal.id
        return payload


class CaseService(ResourceService):
    resource_type = ResourceType.CASE
    entity_label = "case"
    not_found_label = "Case"
    repository = case_repository

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        payload["created_by"] = principal.id
        payload["assigned_to"] = normalize_ref(payload.get("assigned_to")) or principal.id
        return payload


class TaskService(ResourceService):
    resource_type = ResourceType.TASK
    entity_label = "task"
    not_found_label = "Task"
    repository = task_repository

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        payload["created_by"] = principal.id
        payload["assigned_to"] = normalize_ref(payload.get("assigned_to")) or principal.id
        if payload.get("status") == "completed":
            payload["completed_at"] = utcnow()
        return payload

    def prepare_update(
        self,
        session: Session,
        principal: Principal,
        before: dict[str, Any],
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        status = payload.get("status")
        if status is not None and status != before.get("status"):
            payload["completed_at"] = utcnow() if status == "completed" else None
        return payload

    def created_metadata(self, record: Mapping[str, Any]) -> dict[str, Any] | None:
        return {"priority": record.get("priority")}

    def activity_target(
        self,
        record: Mapping[str, Any],
        metadata: Mapping[str, Any] | None,
    ) -> tuple[str, Any, Mapping[str, Any] | None]:
        # Task history is filed under the assignee's user record.
        return ResourceType.USER.value, record["assigned_to"], {**(metadata or {}), "task_id": record["id"]}

    def my_tasks(self, session: Session, principal: Principal | None, now: datetime | None = None) -> dict[str, Any]:
        principal = self.authorize_actor(principal, Operation.LIST)
        current = now or utcnow()
        tomorrow = current + timedelta(days=1)
        tasks = self.repository.open_for(session, principal.id)

        def due(task: Mapping[str, Any]) -> datetime | None:
            return as_aware(task.get("due_date"))

        def reminder(task: Mapping[str, Any]) -> datetime | None:
            return as_aware(task.get("reminder_date"))

        overdue = [task for task in tasks if due(task) is not None and due(task) < current]
        due_today = [task for task in tasks if due(task) is not None and due(task).date() == current.date()]
        due_tomorrow = [
            task
            for task in tasks
            if due(task) is not None and current <= due(task) <= tomorrow and due(task).date() != current.date()
        ]
        upcoming = [task for task in tasks if due(task) is not None and due(task) > tomorrow]
        no_due_date = [task for task in tasks if due(task) is None]
        with_reminders = [
            task
            for task in tasks
            if reminder(task) is not None and current - timedelta(hours=24) < reminder(task) <= current
        ]
        return {
            "all": tasks,
            "overdue": overdue,
            "due_today": due_today,
            "due_tomorrow": due_tomorrow,
            "upcoming": upcoming,
            "no_due_date": no_due_date,
            "with_reminders": with_reminders,
            "counts": {
                "total": len(tasks),
                "overdue": len(overdue),
                "due_today": len(due_today),
                "due_tomorrow": len(due_tomorrow),
                "with_reminders": len(with_reminders),
            },
        }


class RelatedEntityMixin:
    """Files audit entries under the contact/company/case a record hangs off.

    Records with no related entity are filed under themselves.
    """

    resource_type: ResourceType

    def related_entity_name(self, session: Session, record: Mapping[str, Any]) -> str | None:
        entity_type = record.get("related_entity_type")
        entity_id = record.get("related_entity_id")
        if entity_type not in _RELATABLE or not entity_id:
            return None
        repository = REPOSITORIES[ResourceType(entity_type)]
        try:
            related = repository.fetch(session, entity_id)
        except ValidationError:
            return None
        if related is None:
            return None
        return display_name(entity_type, related) or None

    def related_activity_target(
        self,
        record: Mapping[str, Any],
        metadata: Mapping[str, Any] | None,
        id_key: str,
    ) -> tuple[str, Any, Mapping[str, Any] | None]:
        entity_type = record.get("related_entity_type")
        entity_id = record.get("related_entity_id")
        if not entity_type or not entity_id:
            return self.resource_type.value, record["id"], metadata
        return entity_type, entity_id, {**(metadata or {}), id_key: record["id"]}


class MeetingService(RelatedEntityMixin, ResourceService):
    resource_type = ResourceType.MEETING
    entity_label = "meeting"
    not_found_label = "Meeting"
    repository: MeetingRepository = meeting_repository
    verbs = {ActivityType.CREATED: "Scheduled", ActivityType.DELETED: "Cancelled"}

    def list_in_range(
        self,
        session: Session,
        principal: Principal | None,
        filters: Mapping[str, Any] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        extra: tuple[Any, ...] = ()
        if start is not None and end is not None:
            extra = self.repository.overlapping(start, end)
        return self.list(session, principal, filters, extra)

    def get(self, session: Session, principal: Principal | None, entity_id: Any) -> dict[str, Any]:
        record = super().get(session, principal, entity_id)
        record["related_entity_name"] = self.related_entity_name(session, record)
        return record

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        dto = MeetingCreate.model_validate(payload)
        if not dto.title or dto.start_time is None or dto.end_time is None:
            raise ValidationError("Title, start time, and end time are required")
        self._check_window(dto.start_time, dto.end_time)
        values = dto.model_dump()
        values["organizer"] = principal.id
        if not values.get("related_entity_type"):
            values["related_entity_type"] = None
            values["related_entity_id"] = None
        return values

    def prepare_update(
        self,
        session: Session,
        principal: Principal,
        before: dict[str, Any],
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        if payload.get("start_time") is not None or payload.get("end_time") is not None:
            self._check_window(
                payload.get("start_time") or before["start_time"],
                payload.get("end_time") or before["end_time"],
            )
        return payload

    def activity_target(
        self,
        record: Mapping[str, Any],
        metadata: Mapping[str, Any] | None,
    ) -> tuple[str, Any, Mapping[str, Any] | None]:
        return self.related_activity_target(record, metadata, "meeting_id")

    @staticmethod
    def _check_window(start: datetime, end: datetime) -> None:
        if as_aware(end) <= as_aware(start):
            raise ValidationError("End time must be after start time")


class DocumentService(RelatedEntityMixin, ResourceService):
    resource_type = ResourceType.DOCUMENT
    entity_label = "document"
    not_found_label = "Document"
    repository = document_repository
    verbs = {ActivityType.CREATED: "Uploaded"}

    def list(
        self,
        session: Session,
        principal: Principal | None,
        filters: Mapping[str, Any] | None = None,
        extra_clauses: tuple[Any, ...] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        records = super().list(session, principal, filters, extra_clauses, limit)
        for record in records:
            record["related_entity_name"] = self.related_entity_name(session, record)
        return records

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        payload["uploaded_by"] = principal.id
        return payload

    def activity_target(
        self,
        record: Mapping[str, Any],
        metadata: Mapping[str, Any] | None,
    ) -> tuple[str, Any, Mapping[str, Any] | None]:
        return self.related_activity_target(record, metadata, "document_id")


class UserService(ResourceService):
    resource_type = ResourceType.USER
    entity_label = "user"
    not_found_label = "User"
    repository = user_repository

    def prepare_create(self, session: Session, principal: Principal, payload: dict[str, Any]) -> dict[str, Any]:
        dto = UserCreate.model_validate(payload)
        self._ensure_email_free(session, str(dto.email))
        values = dto.model_dump(exclude={"password"})
        values["email"] = str(dto.email)
        values["role"] = dto.role.value
        values["password_hash"] = hash_password(dto.password)
        return values

    def created_metadata(self, record: Mapping[str, Any]) -> dict[str, Any] | None:
        return {"role": record.get("role")}

    @staticmethod
    def canonical_id(entity_id: Any) -> str:
        # Self-targeting checks compare strings; any accepted uuid spelling must match the stored form.
        return str(coerce_uuid(entity_id))

    def update(
        self,
        session: Session,
        principal: Principal | None,
        entity_id: Any,
        payload: Mapping[str, Any],
        background_tasks: BackgroundTasks | None = None,
    ) -> dict[str, Any]:
        # Decided against the target id alone, so a refused edit never reads the row.
        target_id = self.canonical_id(entity_id)
        principal = self.authorize_actor(principal, Operation.UPDATE, {"id": target_id})
        changes = redact(principal, target_id, payload)
        if isinstance(changes.get("role"), Role):
            changes["role"] = changes["role"].value
        if changes.get("email") is not None:
            changes["email"] = str(changes["email"])
            self._ensure_email_free(session, changes["email"], exclude_id=target_id)

        before = self._fetch_or_404(session, entity_id)
        record = self.repository.update(session, entity_id, changes)
        if record is None:
            raise NotFoundError(self.not_found_label)
        classification = classify_update(self.resource_type, before, changes)
        self.record_activity(
            principal,
            classification.type,
            record,
            verb=classification.verb,
            metadata=classification.metadata,
            background_tasks=background_tasks,
        )
        return record

    def delete(
        self,
        session: Session,
        principal: Principal | None,
        entity_id: Any,
        background_tasks: BackgroundTasks | None = None,
    ) -> dict[str, Any]:
        # The self-deletion guard runs here, before any persistence call.
        target_id = self.canonical_id(entity_id)
        principal = self.authorize_actor(principal, Operation.DELETE, {"id": target_id})
        record = self.repository.delete(session, target_id)
        if record is None:
            raise NotFoundError(self.not_found_label)
        self.record_activity(principal, ActivityType.DELETED, record, background_tasks=background_tasks)
        return record

    def change_password(
        self,
        session: Session,
        principal: Principal | None,
        entity_id: Any,
        dto: PasswordChange,
        background_tasks: BackgroundTasks | None = None,
    ) -> None:
        target_id = self.canonical_id(entity_id)
        principal = self.authorize_actor(principal, Operation.CHANGE_PASSWORD, {"id": target_id})
        if not dto.current_password or not dto.new_password:
            raise ValidationError("Current password and new password are required")
        if len(dto.new_password) < 6:
            raise ValidationError("New password must be at least 6 characters")

        user = self.repository.get(session, target_id)
        if user is None:
            raise NotFoundError(self.not_found_label)
        if not verify_password(user.password_hash, dto.current_password):
            raise ValidationError("Current password is incorrect")

        user.password_hash = hash_password(dto.new_password)
        self.repository.commit(session)
        session.refresh(user)
        entry = build_entry(
            principal,
            ActivityType.UPDATED,
            entity_type=self.resource_type.value,
            entity_id=user.id,
            entity_label=self.entity_label,
            name=display_name(self.resource_type, user),
            description="Changed password",
        )
        activity_recorder.dispatch(entry, background_tasks)

    def authenticate(
        self,
        session: Session,
        email: str | None,
        password: str | None,
        background_tasks: BackgroundTasks | None = None,
    ) -> tuple[Principal, str]:
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = self.repository.get_by_email(session, email)
        if user is None:
            raise NotAuthenticatedError("Invalid email or password")
        if not user.is_active:
            raise NotAuthenticatedError("Account is deactivated")
        if not verify_password(user.password_hash, password):
            raise NotAuthenticatedError("Invalid email or password")

        principal = Principal(
            id=str(user.id),
            role=Role(user.role),
            is_active=user.is_active,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
        )
        entry = build_entry(
            principal,
            ActivityType.CREATED,
            entity_type=self.resource_type.value,
            entity_id=user.id,
            entity_label=self.entity_label,
            name=principal.display_name,
            description="User logged in",
        )
        activity_recorder.dispatch(entry, background_tasks)
        logger.info("auth.login", extra={"principal_id": principal.id})
        return principal, generate_token(principal)

    def _ensure_email_free(self, session: Session, email: str, exclude_id: str | None = None) -> None:
        existing = self.repository.get_by_email(session, email)
        if existing is not None and str(existing.id) != exclude_id:
            raise ValidationError("User with this email already exists")


class DashboardService:
    """Read-only aggregates behind the dashboard counters and the global search box."""

    search_limit = 10

    def stats(self, session: Session, principal: Principal | None, now: datetime | None = None) -> dict[str, Any]:
        # Task counters follow the task list scope; the other totals are organisation-wide.
        authorize(principal, ResourceType.TASK, Operation.LIST)
        current = now or utcnow()
        visible_tasks = scope_filter(principal, ResourceType.TASK)

        stages = case_repository.totals_by_stage(session)
        won_count, won_value = stages.get("closed-won", (0, Decimal(0)))
        open_totals = [totals for stage, totals in stages.items() if not stage.startswith("closed-")]
        return {
            "contacts": contact_repository.count(session, MATCH_ALL),
            "companies": company_repository.count(session, MATCH_ALL),
            "cases": sum(count for count, _ in stages.values()),
            "total_case_value": sum((value for _, value in stages.values()), Decimal(0)),
            "won_case_value": won_value,
            "open_case_value": sum((value for _, value in open_totals), Decimal(0)),
            "won_cases": won_count,
            "open_cases": sum(count for count, _ in open_totals),
            "tasks": task_repository.count(session, visible_tasks),
            "pending_tasks": task_repository.count(session, visible_tasks, task_repository.open_clauses()),
            "overdue_tasks": task_repository.count(session, visible_tasks, task_repository.overdue_clauses(current)),
        }

    def search(self, session: Session, principal: Principal | None, text: str | None) -> dict[str, list[dict[str, Any]]]:
        term = (text or "").strip()
        results: dict[str, list[dict[str, Any]]] = {}
        for key, service in (("contacts", contact_service), ("companies", company_service), ("cases", case_service)):
            if not term:
                authorize(principal, service.resource_type, Operation.LIST)
                results[key] = []
                continue
            results[key] = service.list(
                session,
                principal,
                extra_clauses=service.repository.matching(term),
                limit=self.search_limit,
            )
        return results


contact_service = ContactService()
company_service = CompanyService()
case_service = CaseService()
task_service = TaskService()
meeting_service = MeetingService()
document_service = DocumentService()
user_service = UserService()
dashboard_service = DashboardService()
