from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hookbridge.bitrix.errors import MalformedConfig


class ConnectionCategory(StrEnum):
    CREATE_DEAL = "CREATE_DEAL"
    CREATE_LEAD = "CREATE_LEAD"
    MOVE_DEAL = "MOVE_DEAL"
    MOVE_DEAL_BY_PHONE = "MOVE_DEAL_BY_PHONE"


class ConnectionStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ERROR = "ERROR"
    PENDING = "PENDING"


CrmId = str | int


class _ConnectionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class DealConfig(_ConnectionConfig):
    category_id: CrmId | None = Field(default=None, alias="CATEGORY_ID")
    stage_id: CrmId | None = Field(default=None, alias="STAGE_ID")


class LeadConfig(_ConnectionConfig):
    status_id: CrmId | None = Field(default=None, alias="STATUS_ID")


class MoveDealConfig(_ConnectionConfig):
    category_id: CrmId | None = Field(default=None, alias="CATEGORY_ID")
    stage_id: CrmId | None = Field(default=None, alias="STAGE_ID")


ConnectionConfig = DealConfig | LeadConfig | MoveDealConfig

CONFIG_MODELS: dict[ConnectionCategory, type[_ConnectionConfig]] = {
    ConnectionCategory.CREATE_DEAL: DealConfig,
    ConnectionCategory.CREATE_LEAD: LeadConfig,
    ConnectionCategory.MOVE_DEAL: MoveDealConfig,
    ConnectionCategory.MOVE_DEAL_BY_PHONE: MoveDealConfig,
}


def validate_connection_config(category: ConnectionCategory, config: dict[str, Any]) -> dict[str, Any]:
    """Validate a config document for ``category`` and return its canonical form.

    Raises ``pydantic.ValidationError`` on invalid input.
    """
    model = CONFIG_MODELS[category].model_validate(config)
    return model.model_dump(by_alias=True, exclude_none=True)


def parse_connection_config(category: ConnectionCategory, raw: str | None) -> ConnectionConfig:
    model_cls = CONFIG_MODELS[category]
    if raw is None or not raw.strip():
        return model_cls()
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedConfig("connection config is not valid JSON", details=str(exc)) from exc
    if decoded is None:
        return model_cls()
    if not isinstance(decoded, dict):
        raise MalformedConfig("connection config must be a JSON object")
    try:
        return model_cls.model_validate(decoded)
    except ValidationError as exc:
        raise MalformedConfig("connection config is invalid", details=exc.errors(include_url=False)) from exc


@dataclass(slots=True)
class DispatchTarget:
    """Everything the dispatch pipeline reads from a connection and its project."""

    category: str
    crm_base_url: str | None
    config: str | None = None
    field_mapping: str | None = None
    funnel_id: str | None = None
    stage_id: str | None = None
    test_mode: bool = False
    connection_id: str | None = None

    @classmethod
    def from_connection(cls, connection: Any) -> DispatchTarget:
        project = connection.project
        return cls(
            category=connection.category,
            crm_base_url=project.bitrix_webhook_url if project is not None else None,
            config=connection.config,
            field_mapping=connection.field_mapping,
            funnel_id=connection.funnel_id,
            stage_id=connection.stage_id,
            test_mode=bool(project.test_mode) if project is not None else False,
            connection_id=str(connection.id),
        )


class OperationResult(BaseModel):
    type: Literal["deal", "lead"]
    action: Literal["created", "moved", "moved_by_phone"]
    bitrix_id: Any
    mapped_data: dict[str, Any]
    update_data: dict[str, Any] | None = None
    original_payload: dict[str, Any]
    phone_number: str | None = None
    found_deal: dict[str, Any] | None = None
    success: Any = None
    note: str | None = None
