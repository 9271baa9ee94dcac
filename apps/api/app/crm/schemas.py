from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.platform.security.roles import Role


RelatedEntityType = Literal["contact", "company", "case"]
CaseStage = Literal["lead", "qualified", "proposal", "negotiation", "closed-won", "closed-lost"]
TaskStatus = Literal["pending", "in-progress", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
MeetingType = Literal["in-person", "video", "phone", "hybrid"]
MeetingStatus = Literal["scheduled", "completed", "cancelled", "rescheduled"]


class UserRef(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    email: str


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    phone: str | None = None
    company: str | None = None
    position: str | None = None
    notes: str | None = None
    assigned_to: UUID | None = None


class ContactUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    company: str | None = None
    position: str | None = None
    notes: str | None = None
    assigned_to: UUID | None = None


class ContactRead(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None
    company: str | None
    position: str | None
    notes: str | None
    created_by: UserRef | None
    assigned_to: UserRef | None
    created_at: datetime
    updated_at: datetime


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1)
    industry: str | None = None
    website: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    employees: int | None = Field(default=None, ge=0)
    revenue: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class CompanyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    industry: str | None = None
    website: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    employees: int | None = Field(default=None, ge=0)
    revenue: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class CompanyRead(BaseModel):
    id: UUID
    name: str
    industry: str | None
    website: str | None
    email: str | None
    phone: str | None
    address: str | None
    city: str | None
    state: str | None
    zip_code: str | None
    country: str | None
    employees: int | None
    revenue: Decimal | None
    notes: str | None
    created_by: UserRef | None
    created_at: datetime
    updated_at: datetime


class CaseCreate(BaseModel):
    title: str = Field(min_length=1)
    value: Decimal = Field(ge=0)
    stage: CaseStage = "lead"
    probability: int = Field(default=0, ge=0, le=100)
    expected_close_date: date | None = None
    company: str | None = None
    contact: str | None = None
    description: str | None = None
    assigned_to: UUID | None = None


class CaseUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    value: Decimal | None = Field(default=None, ge=0)
    stage: CaseStage | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: date | None = None
    company: str | None = None
    contact: str | None = None
    description: str | None = None
    assigned_to: UUID | None = None


class CaseRead(BaseModel):
    id: UUID
    title: str
    value: Decimal
    stage: str
    probability: int
    expected_close_date: date | None
    company: str | None
    contact: str | None
    description: str | None
    created_by: UserRef | None
    assigned_to: UserRef | None
    created_at: datetime
    updated_at: datetime


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    due_date: datetime | None = None
    reminder_date: datetime | None = None
    assigned_to: UUID | None = None
    related_entity_type: RelatedEntityType | None = None
    related_entity_id: str | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None
    reminder_date: datetime | None = None
    assigned_to: UUID | None = None
    related_entity_type: RelatedEntityType | None = None
    related_entity_id: str | None = None


class TaskRead(BaseModel):
    id: UUID
    title: str
    description: str | None
    status: str
    priority: str
    due_date: datetime | None
    reminder_date: datetime | None
    assigned_to: UserRef
    created_by: UserRef
    related_entity_type: str | None
    related_entity_id: str | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class TaskCounts(BaseModel):
    total: int
    overdue: int
    due_today: int
    due_tomorrow: int
    with_reminders: int


class MyTasksRead(BaseModel):
    all: list[TaskRead]
    overdue: list[TaskRead]
    due_today: list[TaskRead]
    due_tomorrow: list[TaskRead]
    upcoming: list[TaskRead]
    no_due_date: list[TaskRead]
    with_reminders: list[TaskRead]
    counts: TaskCounts


class StatsRead(BaseModel):
    contacts: int
    companies: int
    cases: int
    total_case_value: float
    won_case_value: float
    open_case_value: float
    won_cases: int
    open_cases: int
    tasks: int
    pending_tasks: int
    overdue_tasks: int


class SearchRead(BaseModel):
    contacts: list[ContactRead]
    companies: list[CompanyRead]
    cases: list[CaseRead]


class MeetingCreate(BaseModel):
    # Required fields are checked by the service so the caller gets one combined message.
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    meeting_type: MeetingType = "in-person"
    video_link: str | None = None
    attendees: list[UUID] = Field(default_factory=list)
    reminder_minutes: list[int] = Field(default_factory=list)
    timezone: str = "UTC"
    related_entity_type: RelatedEntityType | None = None
    related_entity_id: str | None = None


class MeetingUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    meeting_type: MeetingType | None = None
    video_link: str | None = None
    status: MeetingStatus | None = None
    attendees: list[UUID] | None = None
    reminder_minutes: list[int] | None = None
    timezone: str | None = None
    related_entity_type: RelatedEntityType | None = None
    related_entity_id: str | None = None


class MeetingRead(BaseModel):
    id: UUID
    title: str
    description: str | None
    start_time: datetime
    end_time: datetime
    location: str | None
    meeting_type: str
    video_link: str | None
    status: str
    organizer: UserRef
    attendees: list[UserRef]
    reminder_minutes: list[int]
    timezone: str
    related_entity_type: str | None
    related_entity_id: str | None
    related_entity_name: str | None = None
    created_at: datetime
    updated_at: datetime


class DocumentCreate(BaseModel):
    filename: str = Field(min_length=1)
    original_name: str = Field(min_length=1)
    mime_type: str = Field(min_length=1)
    size: int = Field(ge=0)
    path: str = Field(min_length=1)
    related_entity_type: RelatedEntityType
    related_entity_id: str = Field(min_length=1)
    description: str | None = None
    category: str | None = None


class DocumentRead(BaseModel):
    id: UUID
    filename: str
    original_name: str
    mime_type: str
    size: int
    path: str
    uploaded_by: UserRef
    related_entity_type: str
    related_entity_id: str
    related_entity_name: str | None = None
    description: str | None
    category: str | None
    created_at: datetime
    updated_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    role: Role = Role.SALESREP
    is_active: bool = True


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    role: Role | None = None
    is_active: bool | None = None
    # Accepted so it can be stripped; passwords change through the password route only.
    password: str | None = None


class PasswordChange(BaseModel):
    current_password: str | None = None
    new_password: str | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    created_at: datetime
    updated_at: datetime


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class LoginRead(BaseModel):
    user: dict[str, Any]
    token: str
