from __future__ import annotations

import pytest

from app.platform.security.context import Principal
from app.platform.security.errors import ForbiddenError, NotAuthenticatedError
from app.platform.security.ownership import (
    Ownership,
    ResourceType,
    UndeclaredOwnershipError,
    is_any_owner,
    is_owner,
    normalize_ref,
)
from app.platform.security.policies import Operation, authorize, decide
from app.platform.security.roles import Role, has_permission, rank


REP = Principal(id="rep-1", role=Role.SALESREP, first_name="Rita", last_name="Rep")
OTHER_REP = Principal(id="rep-2", role=Role.SALESREP, first_name="Sam", last_name="Seller")
MANAGER = Principal(id="mgr-1", role=Role.MANAGER, first_name="Mia", last_name="Manager")
ADMIN = Principal(id="adm-1", role=Role.ADMIN, first_name="Ada", last_name="Admin")


def test_role_rank_orders_salesrep_manager_admin() -> None:
    assert rank(Role.SALESREP) < rank(Role.MANAGER) < rank("admin")

    assert has_permission(MANAGER, Role.MANAGER)
    assert has_permission(ADMIN, Role.SALESREP)
    assert not has_permission(REP, Role.MANAGER)
    assert not has_permission(None, Role.SALESREP)


def test_normalize_ref_accepts_bare_and_populated_refs() -> None:
    assert normalize_ref("rep-1") == "rep-1"
    assert normalize_ref({"id": "rep-1", "first_name": "Rita"}) == "rep-1"
    assert normalize_ref({"_id": "rep-1"}) == "rep-1"
    assert normalize_ref(None) is None
    assert normalize_ref("") is None


def test_is_owner_treats_bare_and_populated_refs_alike() -> None:
    bare = {"id": "c1", "assigned_to": "rep-1", "created_by": None}
    populated = {"id": "c1", "assigned_to": {"id": "rep-1", "email": "rita@example.com"}, "created_by": None}

    assert is_owner(REP, bare, ResourceType.CONTACT, Ownership.ASSIGNEE)
    assert is_owner(REP, populated, ResourceType.CONTACT, Ownership.ASSIGNEE)
    assert not is_owner(OTHER_REP, populated, ResourceType.CONTACT, Ownership.ASSIGNEE)
    assert not is_owner(REP, populated, ResourceType.CONTACT, Ownership.CREATOR)


def test_is_owner_matches_meeting_attendee_lists() -> None:
    meeting = {"organizer": {"id": "mgr-1"}, "attendees": [{"id": "rep-2"}, "rep-1"]}

    assert is_owner(REP, meeting, ResourceType.MEETING, Ownership.ATTENDEE)
    assert is_owner(OTHER_REP, meeting, ResourceType.MEETING, Ownership.ATTENDEE)
    assert not is_owner(REP, meeting, ResourceType.MEETING, Ownership.ORGANIZER)
    assert is_any_owner(MANAGER, meeting, ResourceType.MEETING, Ownership.ORGANIZER, Ownership.ATTENDEE)


def test_is_owner_rejects_undeclared_relation() -> None:
    with pytest.raises(UndeclaredOwnershipError):
        is_owner(REP, {"organizer": "rep-1"}, ResourceType.CONTACT, Ownership.ORGANIZER)

    with pytest.raises(UndeclaredOwnershipError):
        is_owner(REP, {"created_by": "rep-1"}, ResourceType.COMPANY, Ownership.CREATOR)


def test_missing_reference_never_grants_ownership() -> None:
    assert not is_owner(REP, {"assigned_to": None}, ResourceType.TASK, Ownership.ASSIGNEE)
    assert not is_owner(REP, None, ResourceType.TASK, Ownership.ASSIGNEE)
    assert not is_owner(None, {"assigned_to": "rep-1"}, ResourceType.TASK, Ownership.ASSIGNEE)


def test_contact_list_and_read_allow_anonymous_callers() -> None:
    assert decide(None, ResourceType.CONTACT, Operation.LIST).allow
    assert decide(None, ResourceType.CONTACT, Operation.READ, {"assigned_to": "rep-1"}).allow

    denied = decide(None, ResourceType.CONTACT, Operation.CREATE)
    assert not denied.allow
    assert denied.status_code == 401
    assert denied.reason == "Not authenticated"


def test_contact_read_needs_manager_or_ownership() -> None:
    contact = {"id": "c1", "assigned_to": {"id": "rep-1"}, "created_by": {"id": "rep-1"}}

    assert decide(REP, ResourceType.CONTACT, Operation.READ, contact).allow
    assert decide(MANAGER, ResourceType.CONTACT, Operation.READ, contact).allow

    denied = decide(OTHER_REP, ResourceType.CONTACT, Operation.READ, contact)
    assert not denied.allow
    assert denied.status_code == 403
    assert denied.reason == "Insufficient permissions"


def test_task_rules_distinguish_creator_and_assignee() -> None:
    task = {"id": "t1", "assigned_to": {"id": "rep-2"}, "created_by": {"id": "rep-1"}}

    # The creator can edit and delete but not read once the task went to someone else.
    assert not decide(REP, ResourceType.TASK, Operation.READ, task).allow
    assert decide(REP, ResourceType.TASK, Operation.UPDATE, task).allow
    assert decide(REP, ResourceType.TASK, Operation.DELETE, task).allow

    assert decide(OTHER_REP, ResourceType.TASK, Operation.READ, task).allow
    assert decide(OTHER_REP, ResourceType.TASK, Operation.UPDATE, task).allow
    assert not decide(OTHER_REP, ResourceType.TASK, Operation.DELETE, task).allow

    assert decide(MANAGER, ResourceType.TASK, Operation.DELETE, task).allow
    assert decide(None, ResourceType.TASK, Operation.LIST).status_code == 401


def test_meeting_rules_use_organizer_and_attendees() -> None:
    meeting = {"organizer": {"id": "rep-1"}, "attendees": [{"id": "rep-2"}]}
    outsider = Principal(id="rep-3", role=Role.SALESREP)

    assert decide(OTHER_REP, ResourceType.MEETING, Operation.READ, meeting).allow
    assert not decide(OTHER_REP, ResourceType.MEETING, Operation.UPDATE, meeting).allow
    assert not decide(outsider, ResourceType.MEETING, Operation.READ, meeting).allow
    assert decide(REP, ResourceType.MEETING, Operation.DELETE, meeting).allow
    assert decide(MANAGER, ResourceType.MEETING, Operation.UPDATE, meeting).allow


def test_document_read_open_to_any_authenticated_user_and_delete_to_uploader() -> None:
    document = {"uploaded_by": {"id": "rep-1"}}

    assert decide(OTHER_REP, ResourceType.DOCUMENT, Operation.READ, document).allow
    assert not decide(OTHER_REP, ResourceType.DOCUMENT, Operation.DELETE, document).allow
    assert decide(REP, ResourceType.DOCUMENT, Operation.DELETE, document).allow


def test_company_and_case_are_role_only() -> None:
    for variant in (ResourceType.COMPANY, ResourceType.CASE):
        for operation in (Operation.LIST, Operation.READ, Operation.CREATE, Operation.UPDATE, Operation.DELETE):
            assert decide(REP, variant, operation, {"created_by": {"id": "someone-else"}}).allow
            assert decide(None, variant, operation).status_code == 401


def test_user_rules_carry_their_own_messages() -> None:
    create = decide(MANAGER, ResourceType.USER, Operation.CREATE)
    assert not create.allow
    assert create.reason == "Only admins can create users"

    update_other = decide(REP, ResourceType.USER, Operation.UPDATE, {"id": "rep-2"})
    assert update_other.reason == "Only admins can update other users"
    assert decide(REP, ResourceType.USER, Operation.UPDATE, {"id": "rep-1"}).allow

    delete = decide(MANAGER, ResourceType.USER, Operation.DELETE, {"id": "rep-1"})
    assert delete.reason == "Only admins can delete users"
    assert decide(ADMIN, ResourceType.USER, Operation.DELETE, {"id": "rep-1"}).allow

    password = decide(ADMIN, ResourceType.USER, Operation.CHANGE_PASSWORD, {"id": "rep-1"})
    assert not password.allow
    assert password.reason == "You can only change your own password"
    assert decide(REP, ResourceType.USER, Operation.CHANGE_PASSWORD, {"id": "rep-1"}).allow

    assert not decide(REP, ResourceType.USER, Operation.LIST).allow
    assert decide(MANAGER, ResourceType.USER, Operation.READ, {"id": "rep-1"}).allow


def test_admin_self_delete_is_a_bad_request() -> None:
    decision = decide(ADMIN, ResourceType.USER, Operation.DELETE, {"id": "adm-1"})

    assert not decision.allow
    assert decision.status_code == 400
    assert decision.reason == "Cannot delete your own account"

    with pytest.raises(ForbiddenError) as exc_info:
        authorize(ADMIN, ResourceType.USER, Operation.DELETE, {"id": "adm-1"})
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Cannot delete your own account"


def test_authorize_raises_not_authenticated_for_missing_principal() -> None:
    with pytest.raises(NotAuthenticatedError) as exc_info:
        authorize(None, ResourceType.TASK, Operation.CREATE)
    assert exc_info.value.status_code == 401

    allowed = authorize(REP, ResourceType.TASK, Operation.CREATE)
    assert allowed.allow
