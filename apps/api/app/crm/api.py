from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.auth import get_current_principal
from app.core.config import get_settings
from app.core.database import get_db
from app.crm.schemas import (
    CaseCreate,
    CaseRead,
    CaseUpdate,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DocumentCreate,
    DocumentRead,
    LoginRead,
    LoginRequest,
    MeetingCreate,
    MeetingRead,
    MeetingUpdate,
    MyTasksRead,
    PasswordChange,
    SearchRead,
    StatsRead,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    UserCreate,
    UserRead,
    UserUpdate,
)
from app.crm.service import (
    case_service,
    company_service,
    contact_service,
    dashboard_service,
    document_service,
    meeting_service,
    task_service,
    user_service,
)
from app.platform.activity import activity_service
from app.platform.activity.schemas import ActivityRead
from app.platform.security.context import Principal


contacts_router = APIRouter(prefix="/api/contacts", tags=["crm.contacts"])
companies_router = APIRouter(prefix="/api/companies", tags=["crm.companies"])
cases_router = APIRouter(prefix="/api/cases", tags=["crm.cases"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["crm.tasks"])
meetings_router = APIRouter(prefix="/api/meetings", tags=["crm.meetings"])
documents_router = APIRouter(prefix="/api/documents", tags=["crm.documents"])
users_router = APIRouter(prefix="/api/users", tags=["crm.users"])
activities_router = APIRouter(prefix="/api/activities", tags=["crm.activities"])
dashboard_router = APIRouter(prefix="/api", tags=["crm.dashboard"])
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


def success_response(data: Any = None, *, status_code: int = status.HTTP_200_OK, message: str | None = None) -> JSONResponse:
    content: dict[str, Any] = {"success": True}
    if message is not None:
        content["message"] = message
    else:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


def dump(schema: type[BaseModel], record: Any) -> dict[str, Any]:
    return schema.model_validate(record).model_dump(mode="json")


def dump_many(schema: type[BaseModel], records: list[Any]) -> list[dict[str, Any]]:
    return [dump(schema, record) for record in records]


# Contacts


@contacts_router.get("")
def list_contacts(
    assigned_to: uuid.UUID | None = Query(default=None),
    company: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    records = contact_service.list(db, principal, {"assigned_to": assigned_to, "company": company})
    return success_response(dump_many(ContactRead, records))


@contacts_router.post("")
def create_contact(
    dto: ContactCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = contact_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(ContactRead, record), status_code=status.HTTP_201_CREATED)


@contacts_router.get("/{contact_id}")
def get_contact(
    contact_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(ContactRead, contact_service.get(db, principal, contact_id)))


@contacts_router.put("/{contact_id}")
def update_contact(
    contact_id: str,
    dto: ContactUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = contact_service.update(db, principal, contact_id, dto.model_dump(exclude_unset=True), background_tasks)
    return success_response(dump(ContactRead, record))


@contacts_router.delete("/{contact_id}")
def delete_contact(
    contact_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    contact_service.delete(db, principal, contact_id, background_tasks)
    return success_response({})


# Companies


@companies_router.get("")
def list_companies(
    industry: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    records = company_service.list(db, principal, {"industry": industry})
    return success_response(dump_many(CompanyRead, records))


@companies_router.post("")
def create_company(
    dto: CompanyCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = company_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(CompanyRead, record), status_code=status.HTTP_201_CREATED)


@companies_router.get("/{company_id}")
def get_company(
    company_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(CompanyRead, company_service.get(db, principal, company_id)))


@companies_router.put("/{company_id}")
def update_company(
    company_id: str,
    dto: CompanyUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = company_service.update(db, principal, company_id, dto.model_dump(exclude_unset=True), background_tasks)
    return success_response(dump(CompanyRead, record))


@companies_router.delete("/{company_id}")
def delete_company(
    company_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    company_service.delete(db, principal, company_id, background_tasks)
    return success_response({})


# Cases


@cases_router.get("")
def list_cases(
    stage: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    records = case_service.list(db, principal, {"stage": stage})
    return success_response(dump_many(CaseRead, records))


@cases_router.post("")
def create_case(
    dto: CaseCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = case_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(CaseRead, record), status_code=status.HTTP_201_CREATED)


@cases_router.get("/{case_id}")
def get_case(
    case_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(CaseRead, case_service.get(db, principal, case_id)))


@cases_router.put("/{case_id}")
def update_case(
    case_id: str,
    dto: CaseUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = case_service.update(db, principal, case_id, dto.model_dump(exclude_unset=True), background_tasks)
    return success_response(dump(CaseRead, record))


@cases_router.delete("/{case_id}")
def delete_case(
    case_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    case_service.delete(db, principal, case_id, background_tasks)
    return success_response({})


# Tasks


@tasks_router.get("")
def list_tasks(
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = Query(default=None),
    assigned_to: uuid.UUID | None = Query(default=None),
    related_entity_type: str | None = Query(default=None),
    related_entity_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    filters: dict[str, Any] = {"status": status_filter, "priority": priority, "assigned_to": assigned_to}
    if related_entity_type and related_entity_id:
        filters.update({"related_entity_type": related_entity_type, "related_entity_id": related_entity_id})
    records = task_service.list(db, principal, filters)
    return success_response(dump_many(TaskRead, records))


@tasks_router.get("/my")
def my_tasks(
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(MyTasksRead, task_service.my_tasks(db, principal)))


@tasks_router.post("")
def create_task(
    dto: TaskCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = task_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(TaskRead, record), status_code=status.HTTP_201_CREATED)


@tasks_router.get("/{task_id}")
def get_task(
    task_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(TaskRead, task_service.get(db, principal, task_id)))


@tasks_router.put("/{task_id}")
def update_task(
    task_id: str,
    dto: TaskUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = task_service.update(db, principal, task_id, dto.model_dump(exclude_unset=True), background_tasks)
    return success_response(dump(TaskRead, record))


@tasks_router.delete("/{task_id}")
def delete_task(
    task_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    task_service.delete(db, principal, task_id, background_tasks)
    return success_response(message="Task deleted successfully")


# Meetings


@meetings_router.get("")
def list_meetings(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    records = meeting_service.list_in_range(db, principal, {"user_id": user_id}, start=start, end=end)
    return success_response(dump_many(MeetingRead, records))


@meetings_router.post("")
def create_meeting(
    dto: MeetingCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = meeting_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(MeetingRead, record), status_code=status.HTTP_201_CREATED)


@meetings_router.get("/{meeting_id}")
def get_meeting(
    meeting_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(MeetingRead, meeting_service.get(db, principal, meeting_id)))


@meetings_router.put("/{meeting_id}")
def update_meeting(
    meeting_id: str,
    dto: MeetingUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = meeting_service.update(db, principal, meeting_id, dto.model_dump(exclude_unset=True), background_tasks)
    return success_response(dump(MeetingRead, record))


@meetings_router.delete("/{meeting_id}")
def delete_meeting(
    meeting_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    meeting_service.delete(db, principal, meeting_id, background_tasks)
    return success_response(message="Meeting deleted")


# Documents


@documents_router.get("")
def list_documents(
    related_entity_type: str | None = Query(default=None),
    related_entity_id: str | None = Query(default=None),
    category: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    filters: dict[str, Any] = {"category": category}
    if related_entity_type and related_entity_id:
        filters.update({"related_entity_type": related_entity_type, "related_entity_id": related_entity_id})
    records = document_service.list(db, principal, filters)
    return success_response(dump_many(DocumentRead, records))


@documents_router.post("")
def create_document(
    dto: DocumentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = document_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(DocumentRead, record), status_code=status.HTTP_201_CREATED)


@documents_router.get("/{document_id}")
def get_document(
    document_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(DocumentRead, document_service.get(db, principal, document_id)))


@documents_router.delete("/{document_id}")
def delete_document(
    document_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    document_service.delete(db, principal, document_id, background_tasks)
    return success_response(message="Document deleted successfully")


# Users


@users_router.get("")
def list_users(
    role: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    records = user_service.list(db, principal, {"role": role, "is_active": is_active})
    return success_response(dump_many(UserRead, records))


@users_router.post("")
def create_user(
    dto: UserCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = user_service.create(db, principal, dto.model_dump(), background_tasks)
    return success_response(dump(UserRead, record), status_code=status.HTTP_201_CREATED)


@users_router.get("/{user_id}")
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(UserRead, user_service.get(db, principal, user_id)))


@users_router.put("/{user_id}")
def update_user(
    user_id: str,
    dto: UserUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    record = user_service.update(db, principal, user_id, dto.model_dump(exclude_unset=True), background_tasks)
    return success_response(dump(UserRead, record))


@users_router.delete("/{user_id}")
def delete_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    user_service.delete(db, principal, user_id, background_tasks)
    return success_response(message="User deleted successfully")


@users_router.put("/{user_id}/password")
def change_password(
    user_id: str,
    dto: PasswordChange,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    user_service.change_password(db, principal, user_id, dto, background_tasks)
    return success_response(message="Password changed successfully")


# Activities


@activities_router.get("")
def list_activities(
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    entries = activity_service.list_activities(
        principal,
        {"entity_type": entity_type, "entity_id": entity_id, "actor_id": actor_id},
        limit,
    )
    return success_response([dump(ActivityRead, entry.to_dict()) for entry in entries])


# Dashboard


@dashboard_router.get("/stats")
def dashboard_stats(
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(StatsRead, dashboard_service.stats(db, principal)))


@dashboard_router.get("/search")
def search(
    q: str | None = Query(default=None, max_length=200),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
) -> JSONResponse:
    return success_response(dump(SearchRead, dashboard_service.search(db, principal, q)))


# Auth


@auth_router.post("/login")
def login(
    dto: LoginRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> JSONResponse:
    principal, token = user_service.authenticate(db, dto.email, dto.password, background_tasks)
    payload = LoginRead(
        user={
            "id": principal.id,
            "email": principal.email,
            "role": principal.role.value,
            "first_name": principal.first_name,
            "last_name": principal.last_name,
        },
        token=token,
    )
    settings = get_settings()
    response = success_response(payload.model_dump(mode="json"))
    response.set_cookie(
        settings.auth_cookie_name,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=60 * 60 * 24 * settings.jwt_expires_days,
    )
    return response


@auth_router.post("/logout")
def logout() -> JSONResponse:
    response = success_response(message="Logged out successfully")
    response.delete_cookie(get_settings().auth_cookie_name)
    return response


routers = [
    contacts_router,
    companies_router,
    cases_router,
    tasks_router,
    meetings_router,
    documents_router,
    users_router,
    activities_router,
    dashboard_router,
    auth_router,
]
