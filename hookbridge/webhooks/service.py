from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from hookbridge.bitrix.dispatch import dispatch
from hookbridge.bitrix.errors import Inactive, InvalidPayload, NotFound
from hookbridge.bitrix.handlers import ClientFactory
from hookbridge.bitrix.schemas import ConnectionStatus, DispatchTarget, OperationResult
from hookbridge.projects.models import WEBHOOK_PATH_PREFIX, Connection


logger = logging.getLogger("hookbridge.webhooks")


def webhook_path(token: str) -> str:
    return f"{WEBHOOK_PATH_PREFIX}{token}"


def _reject_constant(name: str) -> Any:
    raise InvalidPayload(f"request body contains non-standard JSON constant {name}")


def decode_payload(body: bytes) -> dict[str, Any]:
    if not body.strip():
        raise InvalidPayload("request body must be a JSON object")
    try:
        payload = json.loads(body, parse_constant=_reject_constant)
    except ValueError as exc:
        raise InvalidPayload("request body is not valid JSON", details=str(exc)) from exc
    if not isinstance(payload, dict):
        raise InvalidPayload("request body must be a JSON object")
    return payload


class WebhookService:
    def resolve(self, session: Session, token: str) -> Connection:
        connection = session.scalar(
            select(Connection).options(selectinload(Connection.project)).where(Connection.webhook_url == webhook_path(token))
        )
        if connection is None:
            raise NotFound("webhook not found")
        return connection

    def describe(self, session: Session, token: str) -> dict[str, Any]:
        connection = self.resolve(session, token)
        return {
            "id": str(connection.id),
            "name": connection.name,
            "category": connection.category,
            "status": connection.status,
        }

    def process(self, session: Session, token: str, body: bytes, client_factory: ClientFactory) -> OperationResult:
        connection = self.resolve(session, token)
        if connection.status != ConnectionStatus.ACTIVE:
            raise Inactive("webhook is not active", details={"status": connection.status})

        payload = decode_payload(body)
        target = DispatchTarget.from_connection(connection)
        logger.info(
            "webhook.received",
            extra={"connection_id": target.connection_id, "project_id": str(connection.project_id), "category": target.category},
        )
        return dispatch(target, payload, client_factory)


webhook_service = WebhookService()
