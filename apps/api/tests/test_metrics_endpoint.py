from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import get_current_principal
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMUser
from app.main import app
from app.platform.activity import InMemoryAuditSink, set_audit_sink
from app.platform.security.context import Principal
from app.platform.security.roles import Role


USER_LIST_DENIED = {"resource": "user", "operation": "list", "outcome": "deny"}


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    set_audit_sink(InMemoryAuditSink())
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    rep = CRMUser(email="rita@example.com", password_hash="x", first_name="Rita", last_name="Rep", role="salesrep")
    admin = CRMUser(email="ada@example.com", password_hash="x", first_name="Ada", last_name="Admin", role="admin")
    db_session.add_all([rep, admin])
    db_session.commit()
    actors: dict[str, Principal | None] = {
        "rep": Principal(id=str(rep.id), role=Role.SALESREP, first_name="Rita", last_name="Rep"),
        "admin": Principal(id=str(admin.id), role=Role.ADMIN, first_name="Ada", last_name="Admin"),
        "anonymous": None,
    }
    state = {"current": "rep"}

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_principal() -> Principal | None:
        return actors[state["current"]]

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_authz_and_activity_metrics(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    denied_before = REGISTRY.get_sample_value("authz_decisions_total", USER_LIST_DENIED) or 0.0

    assert test_client.get("/health").status_code == 200
    created = test_client.post(
        "/api/contacts",
        json={"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com"},
    )
    assert created.status_code == 201
    assert test_client.get("/api/users").status_code == 403
    user_update = test_client.put(
        f"/api/users/{created.json()['data']['created_by']['id']}",
        json={"first_name": "Rita", "role": "admin"},
    )
    assert user_update.status_code == 200

    set_actor("admin")
    metrics = test_client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "authz_decisions_total" in body
    assert "activity_records_total" in body
    assert "redacted_fields_count" in body

    assert 'path="/health"' in body
    assert 'path="/api/contacts"' in body
    assert REGISTRY.get_sample_value("authz_decisions_total", USER_LIST_DENIED) == denied_before + 1
    assert 'type="created"' in body


def test_metrics_endpoint_requires_admin(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client

    forbidden = test_client.get("/metrics")
    assert forbidden.status_code == 403
    assert forbidden.json() == {"success": False, "error": "Insufficient permissions"}

    set_actor("anonymous")
    assert test_client.get("/metrics").status_code == 401


def test_metrics_endpoint_hidden_when_disabled(
    client: tuple[TestClient, Callable[[str], None]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    test_client, set_actor = client
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()
    set_actor("admin")

    response = test_client.get("/metrics")

    assert response.status_code == 404
