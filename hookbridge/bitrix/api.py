from __future__ import annotations

import uuid
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from hookbridge.api.errors import error_response
from hookbridge.bitrix.dispatch import get_bitrix_client_factory
from hookbridge.bitrix.errors import WebhookError
from hookbridge.bitrix.handlers import ClientFactory
from hookbridge.bitrix.metadata import get_entity_fields, get_funnels, get_stages
from hookbridge.core.auth import AuthUser, get_current_user
from hookbridge.core.database import get_db
from hookbridge.projects.service import project_service


router = APIRouter(prefix="/api/bitrix", tags=["bitrix.metadata"])


def _failure(request: Request, exc: HTTPException | WebhookError, code: str) -> JSONResponse:
    if isinstance(exc, WebhookError):
        return error_response(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )
    return error_response(request, status_code=exc.status_code, code=code, message=str(exc.detail))


@router.get("/fields", response_model=None)
def list_fields(
    request: Request,
    project_id: uuid.UUID = Query(),
    entity_type: Literal["lead", "deal"] = Query(),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    client_factory: ClientFactory = Depends(get_bitrix_client_factory),
) -> dict[str, Any] | JSONResponse:
    try:
        base_url = project_service.get_crm_base_url(db, user, project_id)
        return {"fields": get_entity_fields(base_url, entity_type, client_factory)}
    except (HTTPException, WebhookError) as exc:
        return _failure(request, exc, "bitrix_fields_failed")


@router.get("/funnels", response_model=None)
def list_funnels(
    request: Request,
    project_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    client_factory: ClientFactory = Depends(get_bitrix_client_factory),
) -> dict[str, Any] | JSONResponse:
    try:
        base_url = project_service.get_crm_base_url(db, user, project_id)
        return {"funnels": get_funnels(base_url, client_factory)}
    except (HTTPException, WebhookError) as exc:
        return _failure(request, exc, "bitrix_funnels_failed")


@router.get("/stages", response_model=None)
def list_stages(
    request: Request,
    project_id: uuid.UUID = Query(),
    funnel_id: str = Query(min_length=1),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    client_factory: ClientFactory = Depends(get_bitrix_client_factory),
) -> dict[str, Any] | JSONResponse:
    try:
        base_url = project_service.get_crm_base_url(db, user, project_id)
        return {"stages": get_stages(base_url, funnel_id, client_factory)}
    except (HTTPException, WebhookError) as exc:
        return _failure(request, exc, "bitrix_stages_failed")
