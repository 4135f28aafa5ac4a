from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hookbridge.accounts.models import User
from hookbridge.context import reset_correlation_id, set_correlation_id
from hookbridge.core.config import get_settings
from hookbridge.core.database import Base, get_db
from hookbridge.logging import JsonLogFormatter, redact_webhook_secrets
from hookbridge.main import app
from hookbridge.projects.models import Connection, Project


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


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    get_settings.cache_clear()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def test_correlation_id_is_generated_and_echoed(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.headers["x-correlation-id"]


def test_request_log_carries_correlation_id_and_route_template(
    client: TestClient,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="hookbridge.request")

    response = client.get("/api/webhook/bitrix/" + "a" * 64, headers={"x-correlation-id": "corr-log-1"})

    assert response.status_code == 404
    records = [record for record in caplog.records if record.getMessage() == "http.request"]
    assert records
    record = records[-1]
    assert record.correlation_id == "corr-log-1"
    assert record.path == "/api/webhook/bitrix/{id}"
    assert record.status_code == 404


def test_dispatch_log_names_connection_and_outcome(
    client: TestClient,
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    owner = User(email="log@example.com", password_hash="x", role="USER")
    db_session.add(owner)
    db_session.flush()
    project = Project(name="Logs", owner_id=owner.id, bitrix_webhook_url="https://portal.example.com/rest/1/k/", test_mode=True)
    db_session.add(project)
    db_session.flush()
    connection = Connection(name="Test", category="CREATE_LEAD", project_id=project.id)
    db_session.add(connection)
    db_session.commit()
    caplog.set_level(logging.INFO, logger="hookbridge.webhooks")

    response = client.post(connection.webhook_url, json={"name": "x"})

    assert response.status_code == 200
    dispatch_records = [record for record in caplog.records if record.getMessage() == "webhook.dispatch"]
    assert len(dispatch_records) == 1
    assert dispatch_records[0].connection_id == str(connection.id)
    assert dispatch_records[0].category == "CREATE_LEAD"
    assert dispatch_records[0].outcome == "test_mode"


def test_json_formatter_keeps_known_fields_only() -> None:
    token = set_correlation_id("corr-fmt-1")
    try:
        record = logging.getLogger("hookbridge.bitrix").makeRecord(
            "hookbridge.bitrix",
            logging.WARNING,
            __file__,
            1,
            "bitrix.call_failed",
            None,
            None,
            extra={"bitrix_method": "crm.deal.add", "error": "x" * 800, "secret": "hidden"},
        )
        record.correlation_id = "corr-fmt-1"
        payload = json.loads(JsonLogFormatter().format(record))
    finally:
        reset_correlation_id(token)

    assert payload["msg"] == "bitrix.call_failed"
    assert payload["level"] == "WARNING"
    assert payload["correlation_id"] == "corr-fmt-1"
    assert payload["fields"]["bitrix_method"] == "crm.deal.add"
    assert len(payload["fields"]["error"]) == 500
    assert "secret" not in payload["fields"]


def test_formatter_masks_webhook_access_keys() -> None:
    record = logging.getLogger("hookbridge.bitrix").makeRecord(
        "hookbridge.bitrix",
        logging.WARNING,
        __file__,
        1,
        "bitrix.call_failed",
        None,
        None,
        extra={"error": "ConnectError for https://portal.example.com/rest/1/s3cr3tkey/crm.deal.add.json"},
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert "s3cr3tkey" not in payload["fields"]["error"]
    assert payload["fields"]["error"].endswith("/rest/1/***/crm.deal.add.json")
    assert redact_webhook_secrets("no url here") == "no url here"


def test_malformed_inbound_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"x-correlation-id": "bad id with spaces"})

    assert response.status_code == 200
    assert response.headers["x-correlation-id"] != "bad id with spaces"
    assert len(response.headers["x-correlation-id"]) == 36
