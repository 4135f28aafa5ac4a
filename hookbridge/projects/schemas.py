from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hookbridge.bitrix.errors import MalformedConfig
from hookbridge.bitrix.mapping import FieldMappingRule, parse_field_mapping
from hookbridge.bitrix.schemas import ConnectionCategory, ConnectionStatus, OperationResult
from hookbridge.projects.models import Connection, ProjectStatus


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    bitrix_webhook_url: str | None = None
    test_mode: bool = False


class ProjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: ProjectStatus | None = None
    bitrix_webhook_url: str | None = None
    test_mode: bool | None = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    status: str
    bitrix_webhook_url: str | None
    test_mode: bool
    owner_id: UUID
    created_at: datetime
    updated_at: datetime


class ProjectOwnerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str | None


class AdminProjectRead(ProjectRead):
    owner: ProjectOwnerRead


class FieldMappingRuleIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_field: str = Field(alias="sourceField")
    target_field: str = Field(min_length=1, alias="targetField")


FieldMappingInput = list[FieldMappingRuleIn] | str | None


class ConnectionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: ConnectionCategory
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    config: dict[str, Any] | None = None
    field_mapping: FieldMappingInput = None
    funnel_id: str | None = None
    stage_id: str | None = None


class ConnectionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: ConnectionStatus | None = None
    config: dict[str, Any] | None = None
    field_mapping: FieldMappingInput = None
    funnel_id: str | None = None
    stage_id: str | None = None


def _decode_config(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


def _decode_field_mapping(raw: str | None) -> list[FieldMappingRule]:
    try:
        return parse_field_mapping(raw)
    except MalformedConfig:
        return []


class ConnectionRead(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    description: str | None
    type: str
    category: str
    status: str
    config: dict[str, Any] | None
    field_mapping: list[dict[str, str]]
    funnel_id: str | None
    stage_id: str | None
    webhook_url: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, connection: Connection) -> ConnectionRead:
        rules = _decode_field_mapping(connection.field_mapping)
        return cls(
            id=connection.id,
            project_id=connection.project_id,
            name=connection.name,
            description=connection.description,
            type=connection.type,
            category=connection.category,
            status=connection.status,
            config=_decode_config(connection.config),
            field_mapping=[{"sourceField": rule.source_field, "targetField": rule.target_field} for rule in rules],
            funnel_id=connection.funnel_id,
            stage_id=connection.stage_id,
            webhook_url=connection.webhook_url,
            created_at=connection.created_at,
            updated_at=connection.updated_at,
        )


class ConnectionTestRequest(BaseModel):
    category: str
    funnel_id: str | None = None
    stage_id: str | None = None
    config: dict[str, Any] | None = None
    field_mapping: FieldMappingInput = None
    test_data: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestResponse(BaseModel):
    success: bool
    id: Any
    mapped_data: dict[str, Any]
    original_data: dict[str, Any]
    result: OperationResult
