from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement

from app.core.database import Base
from app.crm.models import CRMCase, CRMCompany, CRMContact, CRMDocument, CRMMeeting, CRMTask, CRMUser
from app.platform.security.errors import PersistenceError, ValidationError
from app.platform.security.ownership import ResourceType
from app.platform.security.repository import BaseRepository, coerce_uuid
from app.platform.security.scoping import Predicate


def user_ref(user: CRMUser | None) -> dict[str, Any] | None:
    """Populated form of a user relation, as embedded in resource records."""

    if user is None:
        return None
    return {
        "id": str(user.id),
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
    }


OPEN_TASK_STATUSES = ("pending", "in-progress")


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


class CRMRepository(BaseRepository):
    """Plain-dict persistence for one resource variant.

    ``relations`` maps a record field (``assigned_to``) to its foreign-key
    attribute (``assigned_to_id``). Records carry the populated user object
    under the relation name and never the raw foreign key.
    """

    model: type[Base]
    relations: Mapping[str, str] = {}
    hidden_columns: frozenset[str] = frozenset()
    order_by: tuple[Any, ...] = ()
    search_columns: tuple[Any, ...] = ()

    def to_record(self, row: Any) -> dict[str, Any]:
        skipped = set(self.hidden_columns) | set(self.relations.values())
        record: dict[str, Any] = {}
        for column in row.__table__.columns:
            if column.key in skipped:
                continue
            value = getattr(row, column.key)
            record[column.key] = str(value) if isinstance(value, uuid.UUID) else value
        for field_name in self.relations:
            record[field_name] = user_ref(getattr(row, field_name))
        return record

    def get(self, session: Session, entity_id: Any) -> Any | None:
        return session.get(self.model, coerce_uuid(entity_id))

    def fetch(self, session: Session, entity_id: Any) -> dict[str, Any] | None:
        row = self.get(session, entity_id)
        return self.to_record(row) if row is not None else None

    def find(
        self,
        session: Session,
        predicate: Predicate,
        extra_clauses: tuple[ColumnElement[bool], ...] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        query: Select[Any] = self.apply_scope_query(select(self.model), predicate)
        if extra_clauses:
            query = query.where(*extra_clauses)
        if self.order_by:
            query = query.order_by(*self.order_by)
        if limit is not None:
            query = query.limit(limit)
        try:
            rows = session.scalars(query).unique().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(str(getattr(exc, "orig", None) or exc)) from exc
        return [self.to_record(row) for row in rows]

    def count(
        self,
        session: Session,
        predicate: Predicate,
        extra_clauses: tuple[ColumnElement[bool], ...] = (),
    ) -> int:
        query = self.apply_scope_query(select(func.count()).select_from(self.model), predicate)
        if extra_clauses:
            query = query.where(*extra_clauses)
        return int(session.scalar(query) or 0)

    def matching(self, text: str) -> tuple[ColumnElement[bool], ...]:
        """Case-insensitive substring match over ``search_columns``; the text is taken literally."""

        pattern = _like_pattern(text)
        return (or_(*(column.ilike(pattern, escape="\\") for column in self.search_columns)),)

    def create(self, session: Session, values: Mapping[str, Any]) -> dict[str, Any]:
        row = self.model(**self.to_columns(session, values))
        session.add(row)
        self.commit(session)
        session.refresh(row)
        return self.to_record(row)

    def update(self, session: Session, entity_id: Any, values: Mapping[str, Any]) -> dict[str, Any] | None:
        row = self.get(session, entity_id)
        if row is None:
            return None
        for key, value in self.to_columns(session, values).items():
            setattr(row, key, value)
        self.commit(session)
        session.refresh(row)
        return self.to_record(row)

    def delete(self, session: Session, entity_id: Any) -> dict[str, Any] | None:
        row = self.get(session, entity_id)
        if row is None:
            return None
        record = self.to_record(row)
        session.delete(row)
        self.commit(session)
        return record

    def to_columns(self, session: Session, values: Mapping[str, Any]) -> dict[str, Any]:
        columns: dict[str, Any] = {}
        for key, value in values.items():
            if key in self.relations:
                columns[self.relations[key]] = coerce_uuid(value) if value is not None else None
            else:
                columns[key] = value
        return columns

    @staticmethod
    def commit(session: Session) -> None:
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(getattr(exc, "orig", None) or exc)) from exc


class ContactRepository(CRMRepository):
    resource = ResourceType.CONTACT.value
    model = CRMContact
    relations = {"created_by": "created_by_id", "assigned_to": "assigned_to_id"}
    order_by = (CRMContact.created_at.desc(),)
    search_columns = (
        CRMContact.first_name,
        CRMContact.last_name,
        CRMContact.email,
        CRMContact.phone,
        CRMContact.company,
        CRMContact.position,
    )
    filter_clauses = {
        "assigned_to": lambda value: CRMContact.assigned_to_id == coerce_uuid(value),
        "created_by": lambda value: CRMContact.created_by_id == coerce_uuid(value),
        "company": lambda value: CRMContact.company == value,
        "email": lambda value: CRMContact.email == value,
    }


class CompanyRepository(CRMRepository):
    resource = ResourceType.COMPANY.value
    model = CRMCompany
    relations = {"created_by": "created_by_id"}
    order_by = (CRMCompany.created_at.desc(),)
    search_columns = (
        CRMCompany.name,
        CRMCompany.industry,
        CRMCompany.email,
        CRMCompany.phone,
        CRMCompany.city,
        CRMCompany.state,
        CRMCompany.website,
    )
    filter_clauses = {
        "industry": lambda value: CRMCompany.industry == value,
        "name": lambda value: CRMCompany.name == value,
        "country": lambda value: CRMCompany.country == value,
    }


class CaseRepository(CRMRepository):
    resource = ResourceType.CASE.value
    model = CRMCase
    relations = {"created_by": "created_by_id", "assigned_to": "assigned_to_id"}
    order_by = (CRMCase.created_at.desc(),)
    search_columns = (CRMCase.title, CRMCase.company, CRMCase.contact, CRMCase.description)
    filter_clauses = {
        "stage": lambda value: CRMCase.stage == value,
        "company": lambda value: CRMCase.company == value,
        "assigned_to": lambda value: CRMCase.assigned_to_id == coerce_uuid(value),
        "created_by": lambda value: CRMCase.created_by_id == coerce_uuid(value),
    }

    def totals_by_stage(self, session: Session) -> dict[str, tuple[int, Decimal]]:
        query = select(CRMCase.stage, func.count(), func.sum(CRMCase.value)).group_by(CRMCase.stage)
        return {
            stage: (int(count), Decimal(str(total or 0)))
            for stage, count, total in session.execute(query).all()
        }


class TaskRepository(CRMRepository):
    resource = ResourceType.TASK.value
    model = CRMTask
    relations = {"assigned_to": "assigned_to_id", "created_by": "created_by_id"}
    order_by = (CRMTask.due_date.asc(), CRMTask.created_at.desc())
    filter_clauses = {
        "status": lambda value: CRMTask.status == value,
        "priority": lambda value: CRMTask.priority == value,
        "assigned_to": lambda value: CRMTask.assigned_to_id == coerce_uuid(value),
        "created_by": lambda value: CRMTask.created_by_id == coerce_uuid(value),
        "related_entity_type": lambda value: CRMTask.related_entity_type == value,
        "related_entity_id": lambda value: CRMTask.related_entity_id == str(value),
    }

    @staticmethod
    def open_clauses() -> tuple[ColumnElement[bool], ...]:
        return (CRMTask.status.in_(OPEN_TASK_STATUSES),)

    @staticmethod
    def overdue_clauses(now: datetime) -> tuple[ColumnElement[bool], ...]:
        return (CRMTask.due_date < now, CRMTask.status != "completed")

    def open_for(self, session: Session, assignee_id: Any) -> list[dict[str, Any]]:
        query = (
            select(CRMTask)
            .where(CRMTask.assigned_to_id == coerce_uuid(assignee_id), *self.open_clauses())
            .order_by(*self.order_by)
        )
        return [self.to_record(row) for row in session.scalars(query).all()]


class MeetingRepository(CRMRepository):
    resource = ResourceType.MEETING.value
    model = CRMMeeting
    relations = {"organizer": "organizer_id"}
    order_by = (CRMMeeting.start_time.asc(),)
    filter_clauses = {
        "organizer": lambda value: CRMMeeting.organizer_id == coerce_uuid(value),
        "attendees": lambda value: CRMMeeting.attendees.any(CRMUser.id == coerce_uuid(value)),
        "meeting_type": lambda value: CRMMeeting.meeting_type == value,
        "status": lambda value: CRMMeeting.status == value,
        "related_entity_type": lambda value: CRMMeeting.related_entity_type == value,
        "related_entity_id": lambda value: CRMMeeting.related_entity_id == str(value),
    }

    @staticmethod
    def overlapping(start: datetime, end: datetime) -> tuple[ColumnElement[bool], ...]:
        return (CRMMeeting.start_time <= end, CRMMeeting.end_time >= start)

    def to_record(self, row: Any) -> dict[str, Any]:
        record = super().to_record(row)
        record["attendees"] = [user_ref(user) for user in row.attendees]
        return record

    def to_columns(self, session: Session, values: Mapping[str, Any]) -> dict[str, Any]:
        payload = dict(values)
        attendee_ids = payload.pop("attendees", None)
        columns = super().to_columns(session, payload)
        if attendee_ids is not None:
            columns["attendees"] = self._load_attendees(session, attendee_ids)
        return columns

    @staticmethod
    def _load_attendees(session: Session, attendee_ids: list[Any]) -> list[CRMUser]:
        wanted = list(dict.fromkeys(coerce_uuid(value) for value in attendee_ids))
        if not wanted:
            return []
        users = session.scalars(select(CRMUser).where(CRMUser.id.in_(wanted))).all()
        if len(users) != len(wanted):
            raise ValidationError("Attendee not found")
        return list(users)


class DocumentRepository(CRMRepository):
    resource = ResourceType.DOCUMENT.value
    model = CRMDocument
    relations = {"uploaded_by": "uploaded_by_id"}
    order_by = (CRMDocument.created_at.desc(),)
    filter_clauses = {
        "related_entity_type": lambda value: CRMDocument.related_entity_type == value,
        "related_entity_id": lambda value: CRMDocument.related_entity_id == str(value),
        "category": lambda value: CRMDocument.category == value,
        "uploaded_by": lambda value: CRMDocument.uploaded_by_id == coerce_uuid(value),
    }


class UserRepository(CRMRepository):
    resource = ResourceType.USER.value
    model = CRMUser
    hidden_columns = frozenset({"password_hash"})
    order_by = (CRMUser.created_at.desc(),)
    filter_clauses = {
        "role": lambda value: CRMUser.role == str(value),
        "is_active": lambda value: CRMUser.is_active.is_(_as_bool(value)),
    }

    def get_by_email(self, session: Session, email: str) -> CRMUser | None:
        return session.scalars(select(CRMUser).where(CRMUser.email == email)).first()


contact_repository = ContactRepository()
company_repository = CompanyRepository()
case_repository = CaseRepository()
task_repository = TaskRepository()
meeting_repository = MeetingRepository()
document_repository = DocumentRepository()
user_repository = UserRepository()

REPOSITORIES: dict[ResourceType, CRMRepository] = {
    ResourceType.CONTACT: contact_repository,
    ResourceType.COMPANY: company_repository,
    ResourceType.CASE: case_repository,
    ResourceType.TASK: task_repository,
    ResourceType.MEETING: meeting_repository,
    ResourceType.DOCUMENT: document_repository,
    ResourceType.USER: user_repository,
}
