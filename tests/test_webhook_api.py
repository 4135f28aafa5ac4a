from __future__ import annotations

import json
from collections.abc import Generator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hookbridge.accounts.models import User
from hookbridge.bitrix.client import BitrixClient
from hookbridge.bitrix.dispatch import get_bitrix_client_factory
from hookbridge.core.config import get_settings
from hookbridge.core.database import Base, get_db
from hookbridge.main import app
from hookbridge.projects.models import Connection, Project


PORTAL_URL = "https://portal.example.com/rest/1/secret/"


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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def bitrix_calls() -> list[tuple[str, dict[str, Any]]]:
    return []


@pytest.fixture()
def client(db_session: Session, bitrix_calls: list[tuple[str, dict[str, Any]]]) -> Generator[TestClient, None, None]:
    def handler(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1].removesuffix(".json")
        bitrix_calls.append((method, json.loads(request.content)))
        if method == "crm.deal.list":
            return httpx.Response(200, json={"result": []})
        return httpx.Response(200, json={"result": 501})

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_client_factory():  # type: ignore[no-untyped-def]
        return lambda base_url: BitrixClient(base_url, transport=httpx.MockTransport(handler))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bitrix_client_factory] = override_client_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _seed_connection(
    db_session: Session,
    *,
    category: str = "CREATE_DEAL",
    status: str = "ACTIVE",
    field_mapping: str | None = None,
    config: str | None = None,
    crm_url: str | None = PORTAL_URL,
) -> Connection:
    owner = User(email=f"owner-{category.lower()}-{status.lower()}@example.com", password_hash="x", role="USER")
    db_session.add(owner)
    db_session.flush()
    project = Project(name="Landing", owner_id=owner.id, bitrix_webhook_url=crm_url)
    db_session.add(project)
    db_session.flush()
    connection = Connection(
        name="Orders",
        category=category,
        status=status,
        field_mapping=field_mapping,
        config=config,
        project_id=project.id,
    )
    db_session.add(connection)
    db_session.commit()
    db_session.refresh(connection)
    return connection


def test_unknown_token_returns_404(client: TestClient) -> None:
    response = client.post("/api/webhook/bitrix/" + "0" * 64, json={"a": 1})

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "not_found"
    assert body["correlation_id"] == response.headers["x-correlation-id"]


def test_inactive_connection_returns_400(client: TestClient, db_session: Session, bitrix_calls: list) -> None:
    connection = _seed_connection(db_session, status="INACTIVE")

    response = client.post(connection.webhook_url, json={"name": "x"})

    assert response.status_code == 400
    assert response.json()["code"] == "inactive"
    assert bitrix_calls == []


@pytest.mark.parametrize(
    "body",
    ["[1, 2, 3]", '"text"', "not json", "", '{"price": NaN}', '{"price": -Infinity}'],
)
def test_non_object_body_returns_400(client: TestClient, db_session: Session, body: str) -> None:
    connection = _seed_connection(db_session)

    response = client.post(connection.webhook_url, content=body, headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_payload"


def test_mapped_non_finite_number_is_rejected_before_crm_call(
    client: TestClient,
    db_session: Session,
    bitrix_calls: list,
) -> None:
    connection = _seed_connection(
        db_session,
        field_mapping=json.dumps([{"sourceField": "price", "targetField": "OPPORTUNITY"}]),
    )

    response = client.post(connection.webhook_url, content='{"price": NaN}', headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_payload"
    assert bitrix_calls == []


def test_create_deal_webhook_processes_payload(client: TestClient, db_session: Session, bitrix_calls: list) -> None:
    connection = _seed_connection(
        db_session,
        field_mapping=json.dumps([{"sourceField": "form.name", "targetField": "TITLE"}]),
        config=json.dumps({"STAGE_ID": "PREPARATION"}),
    )

    response = client.post(
        connection.webhook_url,
        json={"form": {"name": "Callback request"}},
        headers={"x-correlation-id": "hook-corr-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "webhook processed"
    assert body["result"]["bitrix_id"] == 501
    assert body["result"]["mapped_data"] == {"TITLE": "Callback request"}
    assert response.headers["x-correlation-id"] == "hook-corr-1"
    assert bitrix_calls == [
        ("crm.deal.add", {"fields": {"TITLE": "Callback request", "CATEGORY_ID": "0", "STAGE_ID": "PREPARATION"}})
    ]


def test_move_by_phone_without_match_returns_404(client: TestClient, db_session: Session) -> None:
    connection = _seed_connection(db_session, category="MOVE_DEAL_BY_PHONE")

    response = client.post(connection.webhook_url, json={"phone": "+70000000000"})

    assert response.status_code == 404
    assert response.json()["code"] == "record_not_found"


def test_missing_deal_identifier_returns_422(client: TestClient, db_session: Session) -> None:
    connection = _seed_connection(db_session, category="MOVE_DEAL")

    response = client.post(connection.webhook_url, json={"stage": "won"})

    assert response.status_code == 422
    assert response.json()["code"] == "missing_identifier"


def test_project_without_crm_url_returns_400(client: TestClient, db_session: Session) -> None:
    connection = _seed_connection(db_session, crm_url=None)

    response = client.post(connection.webhook_url, json={"a": 1})

    assert response.status_code == 400
    assert response.json()["code"] == "missing_crm_config"


def test_stored_unknown_category_returns_400(client: TestClient, db_session: Session) -> None:
    connection = _seed_connection(db_session, category="ARCHIVE_DEAL")

    response = client.post(connection.webhook_url, json={"a": 1})

    assert response.status_code == 400
    assert response.json()["code"] == "unsupported_category"


def test_unexpected_failure_returns_internal_error(client: TestClient, db_session: Session) -> None:
    connection = _seed_connection(db_session)

    def exploding_factory(base_url: str) -> BitrixClient:
        raise RuntimeError("pool exhausted")

    app.dependency_overrides[get_bitrix_client_factory] = lambda: exploding_factory

    response = client.post(connection.webhook_url, json={"a": 1})

    assert response.status_code == 500
    assert response.json()["code"] == "internal_error"


def test_get_reports_webhook_details(client: TestClient, db_session: Session) -> None:
    connection = _seed_connection(db_session, category="CREATE_LEAD")

    response = client.get(connection.webhook_url)

    assert response.status_code == 200
    assert response.json() == {
        "message": "webhook is active",
        "connection": {
            "id": str(connection.id),
            "name": "Orders",
            "category": "CREATE_LEAD",
            "status": "ACTIVE",
        },
    }


def test_get_unknown_token_returns_404(client: TestClient) -> None:
    response = client.get("/api/webhook/bitrix/" + "f" * 64)

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_webhook_paths_are_unique_hex_tokens(db_session: Session) -> None:
    first = _seed_connection(db_session, category="CREATE_DEAL")
    second = _seed_connection(db_session, category="CREATE_LEAD")

    for connection in (first, second):
        prefix, token = connection.webhook_url.rsplit("/", 1)
        assert prefix == "/api/webhook/bitrix"
        assert len(token) == 64
        int(token, 16)
    assert first.webhook_url != second.webhook_url
