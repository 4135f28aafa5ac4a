from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from hookbridge.accounts.schemas import (
    AdminUserCreate,
    AdminUserRead,
    AdminUserResponse,
    AdminUserUpdate,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PrincipalRead,
    RegisterRequest,
    RegisterResponse,
)
from hookbridge.accounts.service import account_service
from hookbridge.api.errors import error_response
from hookbridge.core.auth import AuthUser, get_current_user
from hookbridge.core.config import get_settings
from hookbridge.core.database import get_db
from hookbridge.core.rbac import require_admin
from hookbridge.projects.schemas import AdminProjectRead
from hookbridge.projects.service import project_service


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])

AUTH_COOKIE_MAX_AGE = 60 * 60 * 24 * 7


def _is_https(request: Request) -> bool:
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


@auth_router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    dto: RegisterRequest,
    db: Session = Depends(get_db),
) -> RegisterResponse | JSONResponse:
    try:
        user = account_service.register(db, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="auth_register_failed",
            message=str(exc.detail),
        )
    return RegisterResponse(message="user created", user=user)


@auth_router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    response: Response,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> LoginResponse | JSONResponse:
    try:
        user, token = account_service.authenticate(db, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="auth_login_failed",
            message=str(exc.detail),
        )

    settings = get_settings()
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        max_age=AUTH_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production and _is_https(request),
    )
    return LoginResponse(message="logged in", user=user, access_token=token)


@auth_router.post("/logout", response_model=MessageResponse)
def logout(response: Response) -> MessageResponse:
    response.delete_cookie(key=get_settings().auth_cookie_name, path="/")
    return MessageResponse(message="logged out")


@auth_router.get("/me", response_model=PrincipalRead)
async def me(user: AuthUser = Depends(get_current_user)) -> PrincipalRead:
    return PrincipalRead(sub=user.sub, email=user.email, roles=user.roles)


@admin_router.get("/users", response_model=list[AdminUserRead])
def list_users(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_admin),
) -> list[AdminUserRead]:
    return account_service.list_users(db)


@admin_router.post("/users", response_model=AdminUserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: AdminUserCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_admin),
) -> AdminUserResponse | JSONResponse:
    try:
        user = account_service.create_user(db, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="admin_user_create_failed",
            message=str(exc.detail),
        )
    return AdminUserResponse(message="user created", user=user)


@admin_router.patch("/users/{user_id}", response_model=AdminUserResponse)
def update_user(
    request: Request,
    user_id: uuid.UUID,
    dto: AdminUserUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_admin),
) -> AdminUserResponse | JSONResponse:
    try:
        user = account_service.update_user(db, user_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="admin_user_update_failed",
            message=str(exc.detail),
        )
    return AdminUserResponse(message="user updated", user=user)


@admin_router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> MessageResponse | JSONResponse:
    try:
        account_service.delete_user(db, user.sub, user_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="admin_user_delete_failed",
            message=str(exc.detail),
        )
    return MessageResponse(message="user deleted")


@admin_router.get("/projects", response_model=list[AdminProjectRead])
def list_projects(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_admin),
) -> list[AdminProjectRead]:
    return project_service.list_all_projects(db)
