from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from hookbridge.bitrix.client import BitrixClient
from hookbridge.bitrix.errors import UnsupportedCategory, WebhookError
from hookbridge.bitrix.handlers import ClientFactory, create_deal, create_lead, move_deal, move_deal_by_phone
from hookbridge.bitrix.schemas import ConnectionCategory, DispatchTarget, OperationResult
from hookbridge.metrics import observe_webhook_dispatch


logger = logging.getLogger("hookbridge.webhooks")

Handler = Callable[[DispatchTarget, dict[str, Any], ClientFactory], OperationResult]

HANDLERS: dict[ConnectionCategory, Handler] = {
    ConnectionCategory.CREATE_DEAL: create_deal,
    ConnectionCategory.CREATE_LEAD: create_lead,
    ConnectionCategory.MOVE_DEAL: move_deal,
    ConnectionCategory.MOVE_DEAL_BY_PHONE: move_deal_by_phone,
}


def get_bitrix_client_factory() -> ClientFactory:
    """FastAPI dependency; tests override it to inject a mock transport."""
    return BitrixClient


def resolve_category(raw: Any) -> ConnectionCategory:
    try:
        return ConnectionCategory(raw)
    except ValueError:
        raise UnsupportedCategory(f"unsupported connection category: {raw}") from None


def dispatch(
    target: DispatchTarget,
    payload: dict[str, Any],
    client_factory: ClientFactory = BitrixClient,
) -> OperationResult:
    log_extra = {"connection_id": target.connection_id, "category": str(target.category)}
    try:
        category = resolve_category(target.category)
    except UnsupportedCategory:
        observe_webhook_dispatch("unknown", UnsupportedCategory.code)
        logger.warning("webhook.dispatch", extra={**log_extra, "outcome": UnsupportedCategory.code})
        raise

    handler = HANDLERS[category]
    try:
        result = handler(target, payload, client_factory)
    except WebhookError as exc:
        observe_webhook_dispatch(category.value, exc.code)
        logger.warning(
            "webhook.dispatch",
            extra={**log_extra, "outcome": exc.code, "error_code": exc.code, "error": exc.message},
        )
        raise

    outcome = "test_mode" if result.note else "ok"
    observe_webhook_dispatch(category.value, outcome)
    logger.info("webhook.dispatch", extra={**log_extra, "outcome": outcome})
    return result
