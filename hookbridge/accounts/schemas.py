from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr


class RegisterRequest(BaseModel):
    email: EmailStr | None = None
    password: str | None = None
    name: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str | None
    role: str
    created_at: datetime


class AdminUserRead(UserRead):
    project_count: int = 0


class RegisterResponse(BaseModel):
    message: str
    user: UserRead


class LoginResponse(BaseModel):
    message: str
    user: UserRead
    access_token: str


class PrincipalRead(BaseModel):
    sub: str
    email: str
    roles: list[str]


class MessageResponse(BaseModel):
    message: str


class AdminUserCreate(BaseModel):
    email: EmailStr | None = None
    password: str | None = None
    name: str | None = None
    role: str | None = None


class AdminUserUpdate(BaseModel):
    name: str | None = None
    role: str | None = None
    password: str | None = None


class AdminUserResponse(BaseModel):
    message: str
    user: UserRead
