from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import get_current_principal
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.passwords import hash_password, verify_password
from app.crm.models import CRMUser
from app.crm.repositories import user_repository
from app.main import app
from app.platform.activity import ActivityType, InMemoryAuditSink, set_audit_sink
from app.platform.security.context import Principal
from app.platform.security.roles import Role


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def audit_sink() -> Generator[InMemoryAuditSink, None, None]:
    sink = InMemoryAuditSink()
    set_audit_sink(sink)
    get_settings.cache_clear()
    yield sink
    get_settings.cache_clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, CRMUser]:
    rows = {
        "rep": CRMUser(
            email="rita@example.com",
            password_hash=hash_password("secret1"),
            first_name="Rita",
            last_name="Rep",
            role="salesrep",
        ),
        "rep2": CRMUser(email="sam@example.com", password_hash="x", first_name="Sam", last_name="Seller", role="salesrep"),
        "manager": CRMUser(email="mia@example.com", password_hash="x", first_name="Mia", last_name="Manager", role="manager"),
        "admin": CRMUser(email="ada@example.com", password_hash="x", first_name="Ada", last_name="Admin", role="admin"),
        "inactive": CRMUser(
            email="ivan@example.com",
            password_hash=hash_password("secret1"),
            first_name="Ivan",
            last_name="Idle",
            role="salesrep",
            is_active=False,
        ),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture()
def client(
    db_session: Session,
    users: dict[str, CRMUser],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    actors = {
        name: Principal(id=str(user.id), role=Role(user.role), first_name=user.first_name, last_name=user.last_name)
        for name, user in users.items()
    }
    state = {"current": "admin"}

    def override_get_current_principal() -> Principal | None:
        return actors[state["current"]]

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def anonymous_client(db_session: Session, users: dict[str, CRMUser]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_admin_creates_user_without_exposing_hash(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
    audit_sink: InMemoryAuditSink,
) -> None:
    test_client, _ = client

    response = test_client.post(
        "/api/users",
        json={"email": "nora@example.com", "password": "secret1", "first_name": "Nora", "last_name": "New"},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == "salesrep"
    assert data["is_active"] is True
    assert "password" not in data
    assert "password_hash" not in data

    stored = user_repository.get_by_email(db_session, "nora@example.com")
    assert stored is not None
    assert verify_password(stored.password_hash, "secret1")

    entry = audit_sink.entries[-1]
    assert entry.description == "Created user: Nora New"
    assert entry.metadata == {"role": "salesrep"}


def test_user_creation_rules(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client

    duplicate = test_client.post(
        "/api/users",
        json={"email": "sam@example.com", "password": "secret1", "first_name": "Sam", "last_name": "Again"},
    )
    assert duplicate.status_code == 400
    assert duplicate.json() == {"success": False, "error": "User with this email already exists"}

    short = test_client.post(
        "/api/users",
        json={"email": "x@example.com", "password": "123", "first_name": "X", "last_name": "Y"},
    )
    assert short.status_code == 400

    set_actor("manager")
    denied = test_client.post(
        "/api/users",
        json={"email": "x@example.com", "password": "secret1", "first_name": "X", "last_name": "Y"},
    )
    assert denied.status_code == 403
    assert denied.json()["error"] == "Only admins can create users"


def test_user_read_and_list_permissions(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
) -> None:
    test_client, set_actor = client
    rep_id = str(users["rep"].id)

    set_actor("rep")
    assert test_client.get(f"/api/users/{rep_id}").status_code == 200
    assert test_client.get(f"/api/users/{users['rep2'].id}").status_code == 403
    assert test_client.get("/api/users").status_code == 403

    set_actor("manager")
    assert test_client.get(f"/api/users/{users['rep2'].id}").status_code == 200
    missing = test_client.get("/api/users/7d4b8f0e-5a36-4f0c-9a53-0e7f3f7f7a11")
    assert missing.json() == {"success": False, "error": "User not found"}

    inactive = test_client.get("/api/users", params={"is_active": "false"})
    assert [item["email"] for item in inactive.json()["data"]] == ["ivan@example.com"]
    managers = test_client.get("/api/users", params={"role": "manager"})
    assert [item["email"] for item in managers.json()["data"]] == ["mia@example.com"]


def test_self_update_keeps_only_name_fields(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
) -> None:
    test_client, set_actor = client
    set_actor("rep")

    response = test_client.put(
        f"/api/users/{users['rep'].id}",
        json={
            "first_name": "Rita",
            "last_name": "Reyes",
            "role": "admin",
            "email": "boss@example.com",
            "password": "hunter22",
        },
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["last_name"] == "Reyes"
    assert data["role"] == "salesrep"
    assert data["email"] == "rita@example.com"


def test_update_other_user_requires_admin(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
    audit_sink: InMemoryAuditSink,
) -> None:
    test_client, set_actor = client

    set_actor("manager")
    denied = test_client.put(f"/api/users/{users['rep'].id}", json={"role": "manager"})
    assert denied.status_code == 403
    assert denied.json()["error"] == "Only admins can update other users"

    set_actor("admin")
    promoted = test_client.put(f"/api/users/{users['rep'].id}", json={"role": "manager", "password": "ignored"})
    assert promoted.status_code == 200
    assert promoted.json()["data"]["role"] == "manager"
    assert audit_sink.entries[-1].type == ActivityType.UPDATED
    assert audit_sink.entries[-1].description == "Updated user: Rita Rep"

    taken = test_client.put(f"/api/users/{users['rep'].id}", json={"email": "sam@example.com"})
    assert taken.status_code == 400
    assert taken.json()["error"] == "User with this email already exists"


def test_admin_cannot_delete_own_account(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
    monkeypatch: pytest.MonkeyPatch,
    audit_sink: InMemoryAuditSink,
) -> None:
    test_client, _ = client
    calls: list[object] = []

    def fake_delete(session: Session, entity_id: object) -> None:
        calls.append(entity_id)
        return None

    monkeypatch.setattr(user_repository, "delete", fake_delete)

    response = test_client.delete(f"/api/users/{users['admin'].id}")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Cannot delete your own account"}
    assert calls == []
    assert audit_sink.entries == []


@pytest.mark.parametrize(
    "spelling",
    [
        lambda value: value.upper(),
        lambda value: value.replace("-", ""),
        lambda value: "{" + value + "}",
    ],
    ids=["uppercase", "hex", "braced"],
)
def test_admin_cannot_delete_own_account_via_alternate_id_spelling(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
    db_session: Session,
    audit_sink: InMemoryAuditSink,
    spelling: Callable[[str], str],
) -> None:
    test_client, _ = client
    admin_id = str(users["admin"].id)

    response = test_client.delete(f"/api/users/{spelling(admin_id)}")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Cannot delete your own account"}
    assert db_session.get(CRMUser, users["admin"].id) is not None
    assert audit_sink.entries == []


def test_self_update_via_alternate_id_spelling_is_still_redacted(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
) -> None:
    test_client, set_actor = client
    set_actor("rep")

    response = test_client.put(
        f"/api/users/{str(users['rep'].id).upper()}",
        json={"first_name": "Renamed", "role": "admin"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["first_name"] == "Renamed"
    assert response.json()["data"]["role"] == "salesrep"



def test_admin_deletes_other_user(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
    db_session: Session,
    audit_sink: InMemoryAuditSink,
) -> None:
    test_client, set_actor = client
    rep2_id = users["rep2"].id

    set_actor("manager")
    denied = test_client.delete(f"/api/users/{rep2_id}")
    assert denied.json() == {"success": False, "error": "Only admins can delete users"}

    set_actor("admin")
    deleted = test_client.delete(f"/api/users/{rep2_id}")
    assert deleted.json() == {"success": True, "message": "User deleted successfully"}
    assert user_repository.get_by_email(db_session, "sam@example.com") is None
    assert audit_sink.entries[-1].description == "Deleted user: Sam Seller"

    again = test_client.delete(f"/api/users/{rep2_id}")
    assert again.status_code == 404


def test_change_password_flow(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, CRMUser],
    db_session: Session,
    audit_sink: InMemoryAuditSink,
) -> None:
    test_client, set_actor = client
    rep_id = users["rep"].id

    set_actor("admin")
    foreign = test_client.put(
        f"/api/users/{rep_id}/password",
        json={"current_password": "secret1", "new_password": "changed1"},
    )
    assert foreign.status_code == 403
    assert foreign.json()["error"] == "You can only change your own password"

    set_actor("rep")
    missing = test_client.put(f"/api/users/{rep_id}/password", json={"current_password": "secret1"})
    assert missing.json()["error"] == "Current password and new password are required"

    short = test_client.put(f"/api/users/{rep_id}/password", json={"current_password": "secret1", "new_password": "abc"})
    assert short.json()["error"] == "New password must be at least 6 characters"

    wrong = test_client.put(
        f"/api/users/{rep_id}/password",
        json={"current_password": "nope-nope", "new_password": "changed1"},
    )
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "Current password is incorrect"

    changed = test_client.put(
        f"/api/users/{rep_id}/password",
        json={"current_password": "secret1", "new_password": "changed1"},
    )
    assert changed.json() == {"success": True, "message": "Password changed successfully"}

    stored = db_session.get(CRMUser, rep_id)
    assert stored is not None
    assert verify_password(stored.password_hash, "changed1")
    assert audit_sink.entries[-1].description == "Changed password"


def test_login_sets_cookie_and_resolves_principal(
    anonymous_client: TestClient,
    users: dict[str, CRMUser],
    audit_sink: InMemoryAuditSink,
) -> None:
    response = anonymous_client.post("/api/auth/login", json={"email": "rita@example.com", "password": "secret1"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["id"] == str(users["rep"].id)
    assert data["user"]["role"] == "salesrep"
    assert data["token"]
    assert "auth-token" in response.cookies

    me = anonymous_client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "rita@example.com"

    bearer = anonymous_client.get("/api/tasks", headers={"Authorization": f"Bearer {data['token']}"})
    assert bearer.status_code == 200

    assert audit_sink.entries[-1].description == "User logged in"
    assert audit_sink.entries[-1].actor_id == str(users["rep"].id)

    logout = anonymous_client.post("/api/auth/logout")
    assert logout.json() == {"success": True, "message": "Logged out successfully"}


def test_login_failures(anonymous_client: TestClient) -> None:
    missing = anonymous_client.post("/api/auth/login", json={"email": "rita@example.com"})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Email and password are required"

    wrong = anonymous_client.post("/api/auth/login", json={"email": "rita@example.com", "password": "nope-nope"})
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "Invalid email or password"

    unknown = anonymous_client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "secret1"})
    assert unknown.json()["error"] == "Invalid email or password"

    inactive = anonymous_client.post("/api/auth/login", json={"email": "ivan@example.com", "password": "secret1"})
    assert inactive.status_code == 401
    assert inactive.json()["error"] == "Account is deactivated"
