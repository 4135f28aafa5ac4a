from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, cast

from hookbridge.bitrix.client import BitrixClient
from hookbridge.bitrix.errors import MissingCrmConfig, MissingIdentifier, RecordNotFound
from hookbridge.bitrix.mapping import apply_field_mapping, parse_field_mapping
from hookbridge.bitrix.schemas import (
    ConnectionCategory,
    ConnectionConfig,
    DealConfig,
    DispatchTarget,
    LeadConfig,
    MoveDealConfig,
    OperationResult,
    parse_connection_config,
)
from hookbridge.core.config import get_settings


logger = logging.getLogger("hookbridge.bitrix")

ClientFactory = Callable[[str], BitrixClient]

DEAL_ID_KEYS = ("dealId", "id")
PHONE_KEYS = ("phone", "tel")
TEST_MODE_NOTE = "test mode: no request was sent to Bitrix24"


def _is_test_mode(target: DispatchTarget, base_url: str) -> bool:
    if target.test_mode:
        return True
    sentinel = get_settings().bitrix_test_webhook_url
    return bool(sentinel) and base_url.rstrip("/") == sentinel.rstrip("/")


def _mock_bitrix_id() -> int:
    return random.randint(1000, 10999)


def _prepare(
    target: DispatchTarget,
    payload: dict[str, Any],
    category: ConnectionCategory,
) -> tuple[str, dict[str, Any], ConnectionConfig]:
    base_url = (target.crm_base_url or "").strip()
    if not base_url:
        raise MissingCrmConfig("Bitrix webhook URL is not configured for this project")

    rules = parse_field_mapping(target.field_mapping)
    config = parse_connection_config(category, target.config)
    mapped = apply_field_mapping(payload, rules)
    logger.debug(
        "bitrix.mapped",
        extra={"connection_id": target.connection_id, "category": str(category)},
    )
    return base_url, mapped, config


def _first_present(sources: tuple[dict[str, Any], ...], keys: tuple[str, ...]) -> Any:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value is not None and value != "":
                return value
    return None


def _without(data: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in keys}


def _apply_stage_override(update_data: dict[str, Any], config: MoveDealConfig) -> dict[str, Any]:
    if config.category_id not in (None, ""):
        update_data["CATEGORY_ID"] = config.category_id
    if config.stage_id not in (None, ""):
        update_data["STAGE_ID"] = config.stage_id
    return update_data


def create_deal(target: DispatchTarget, payload: dict[str, Any], client_factory: ClientFactory) -> OperationResult:
    base_url, mapped, prepared_config = _prepare(target, payload, ConnectionCategory.CREATE_DEAL)
    config = cast(DealConfig, prepared_config)

    deal_fields = {
        **mapped,
        "CATEGORY_ID": target.funnel_id or config.category_id or "0",
        "STAGE_ID": target.stage_id or config.stage_id or "NEW",
    }

    if _is_test_mode(target, base_url):
        return OperationResult(
            type="deal",
            action="created",
            bitrix_id=_mock_bitrix_id(),
            mapped_data=mapped,
            original_payload=payload,
            note=TEST_MODE_NOTE,
        )

    with client_factory(base_url) as client:
        deal_id = client.add_deal(deal_fields)

    return OperationResult(
        type="deal",
        action="created",
        bitrix_id=deal_id,
        mapped_data=mapped,
        original_payload=payload,
    )


def create_lead(target: DispatchTarget, payload: dict[str, Any], client_factory: ClientFactory) -> OperationResult:
    base_url, mapped, prepared_config = _prepare(target, payload, ConnectionCategory.CREATE_LEAD)
    config = cast(LeadConfig, prepared_config)

    lead_fields = {
        **mapped,
        "STATUS_ID": target.stage_id or config.status_id or "NEW",
    }

    if _is_test_mode(target, base_url):
        return OperationResult(
            type="lead",
            action="created",
            bitrix_id=_mock_bitrix_id(),
            mapped_data=mapped,
            original_payload=payload,
            note=TEST_MODE_NOTE,
        )

    with client_factory(base_url) as client:
        lead_id = client.add_lead(lead_fields)

    return OperationResult(
        type="lead",
        action="created",
        bitrix_id=lead_id,
        mapped_data=mapped,
        original_payload=payload,
    )


def move_deal(target: DispatchTarget, payload: dict[str, Any], client_factory: ClientFactory) -> OperationResult:
    base_url, mapped, prepared_config = _prepare(target, payload, ConnectionCategory.MOVE_DEAL)
    config = cast(MoveDealConfig, prepared_config)

    deal_id = _first_present((mapped, payload), DEAL_ID_KEYS)
    if deal_id is None:
        raise MissingIdentifier("deal id (dealId or id) not found in the incoming data")

    update_data = _apply_stage_override(_without(mapped, DEAL_ID_KEYS), config)

    if _is_test_mode(target, base_url):
        return OperationResult(
            type="deal",
            action="moved",
            bitrix_id=deal_id,
            mapped_data=mapped,
            update_data=update_data,
            original_payload=payload,
            note=TEST_MODE_NOTE,
        )

    with client_factory(base_url) as client:
        updated = client.update_deal(deal_id, update_data)

    return OperationResult(
        type="deal",
        action="moved",
        bitrix_id=deal_id,
        mapped_data=mapped,
        update_data=update_data,
        original_payload=payload,
        success=updated,
    )


def _parse_created_at(raw: Any) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
    return datetime.min.replace(tzinfo=timezone.utc)


def _numeric_id(raw: Any) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return -1


def pick_latest_deal(deals: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Most recently created deal wins; equal creation times fall back to the highest id."""
    if not deals:
        return None
    return max(deals, key=lambda deal: (_parse_created_at(deal.get("DATE_CREATE")), _numeric_id(deal.get("ID"))))


def move_deal_by_phone(
    target: DispatchTarget,
    payload: dict[str, Any],
    client_factory: ClientFactory,
) -> OperationResult:
    base_url, mapped, prepared_config = _prepare(target, payload, ConnectionCategory.MOVE_DEAL_BY_PHONE)
    config = cast(MoveDealConfig, prepared_config)

    phone = _first_present((mapped, payload), PHONE_KEYS)
    if phone is None:
        raise MissingIdentifier("phone number (phone or tel) not found in the incoming data")
    phone_number = str(phone)

    update_data = _apply_stage_override(_without(mapped, PHONE_KEYS), config)

    if _is_test_mode(target, base_url):
        return OperationResult(
            type="deal",
            action="moved_by_phone",
            bitrix_id=_mock_bitrix_id(),
            mapped_data=mapped,
            update_data=update_data,
            original_payload=payload,
            phone_number=phone_number,
            note=TEST_MODE_NOTE,
        )

    with client_factory(base_url) as client:
        latest = pick_latest_deal(client.list_deals_by_phone(phone_number))
        if latest is None:
            raise RecordNotFound(f"no deal found for phone number {phone_number}")
        deal_id = latest.get("ID")
        updated = client.update_deal(deal_id, update_data)

    return OperationResult(
        type="deal",
        action="moved_by_phone",
        bitrix_id=deal_id,
        mapped_data=mapped,
        update_data=update_data,
        original_payload=payload,
        phone_number=phone_number,
        found_deal=latest,
        success=updated,
    )
