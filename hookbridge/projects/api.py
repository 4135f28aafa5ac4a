from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from hookbridge.api.errors import error_response
from hookbridge.bitrix.dispatch import get_bitrix_client_factory
from hookbridge.bitrix.errors import WebhookError
from hookbridge.bitrix.handlers import ClientFactory
from hookbridge.core.auth import AuthUser, get_current_user
from hookbridge.core.database import get_db
from hookbridge.projects.schemas import (
    ConnectionCreate,
    ConnectionRead,
    ConnectionTestRequest,
    ConnectionTestResponse,
    ConnectionUpdate,
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
)
from hookbridge.projects.service import project_service


router = APIRouter(prefix="/api/projects", tags=["projects"])
connections_router = APIRouter(prefix="/api/projects/{project_id}/connections", tags=["projects.connections"])


def _http_error(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def _webhook_error(request: Request, exc: WebhookError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@router.get("", response_model=list[ProjectRead])
def list_projects(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ProjectRead] | JSONResponse:
    try:
        return project_service.list_projects(db, user)
    except HTTPException as exc:
        return _http_error(request, exc, "project_list_failed")


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    request: Request,
    dto: ProjectCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        return project_service.create_project(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "project_create_failed")


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        return project_service.get_project(db, user, project_id)
    except HTTPException as exc:
        return _http_error(request, exc, "project_get_failed")


@router.put("/{project_id}", response_model=ProjectRead)
def update_project(
    request: Request,
    project_id: uuid.UUID,
    dto: ProjectUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        return project_service.update_project(db, user, project_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "project_update_failed")


@router.delete("/{project_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_project(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, str] | JSONResponse:
    try:
        project_service.delete_project(db, user, project_id)
    except HTTPException as exc:
        return _http_error(request, exc, "project_delete_failed")
    return {"message": "project deleted"}


@connections_router.get("", response_model=list[ConnectionRead])
def list_connections(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ConnectionRead] | JSONResponse:
    try:
        return project_service.list_connections(db, user, project_id)
    except HTTPException as exc:
        return _http_error(request, exc, "connection_list_failed")


@connections_router.post("", response_model=ConnectionRead, status_code=status.HTTP_201_CREATED)
def create_connection(
    request: Request,
    project_id: uuid.UUID,
    dto: ConnectionCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ConnectionRead | JSONResponse:
    try:
        return project_service.create_connection(db, user, project_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "connection_create_failed")


@connections_router.post("/test", response_model=ConnectionTestResponse)
def test_connection(
    request: Request,
    project_id: uuid.UUID,
    dto: ConnectionTestRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    client_factory: ClientFactory = Depends(get_bitrix_client_factory),
) -> ConnectionTestResponse | JSONResponse:
    try:
        return project_service.run_connection_test(db, user, project_id, dto, client_factory)
    except HTTPException as exc:
        return _http_error(request, exc, "connection_test_failed")
    except WebhookError as exc:
        return _webhook_error(request, exc)


@connections_router.get("/{connection_id}", response_model=ConnectionRead)
def get_connection(
    request: Request,
    project_id: uuid.UUID,
    connection_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ConnectionRead | JSONResponse:
    try:
        return project_service.get_connection(db, user, project_id, connection_id)
    except HTTPException as exc:
        return _http_error(request, exc, "connection_get_failed")


@connections_router.put("/{connection_id}", response_model=ConnectionRead)
def update_connection(
    request: Request,
    project_id: uuid.UUID,
    connection_id: uuid.UUID,
    dto: ConnectionUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ConnectionRead | JSONResponse:
    try:
        return project_service.update_connection(db, user, project_id, connection_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "connection_update_failed")
    except WebhookError as exc:
        return _webhook_error(request, exc)


@connections_router.delete("/{connection_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_connection(
    request: Request,
    project_id: uuid.UUID,
    connection_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, str] | JSONResponse:
    try:
        project_service.delete_connection(db, user, project_id, connection_id)
    except HTTPException as exc:
        return _http_error(request, exc, "connection_delete_failed")
    return {"message": "connection deleted"}
