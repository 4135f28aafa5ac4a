from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hookbridge.accounts.models import User, UserRole
from hookbridge.accounts.schemas import (
    AdminUserCreate,
    AdminUserRead,
    AdminUserUpdate,
    LoginRequest,
    RegisterRequest,
    UserRead,
)
from hookbridge.core.security import create_access_token, hash_password, verify_password
from hookbridge.projects.models import Project


logger = logging.getLogger("hookbridge.accounts")

MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"password must be at least {MIN_PASSWORD_LENGTH} characters",
        )


def _check_role(role: str) -> str:
    if role not in {UserRole.USER, UserRole.ADMIN}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"invalid role: {role}")
    return role


class AccountService:
    def _get_user(self, session: Session, user_id: uuid.UUID) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        return user

    def _count_admins(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(User).where(User.role == UserRole.ADMIN)) or 0

    def _insert_user(self, session: Session, *, email: str, password: str, name: str | None, role: str) -> User:
        user = User(
            email=_normalize_email(email),
            password_hash=hash_password(password),
            name=name or None,
            role=role,
        )
        session.add(user)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="user with this email already exists")
        session.refresh(user)
        return user

    def register(self, session: Session, dto: RegisterRequest) -> UserRead:
        if not dto.email or not dto.password:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="email and password are required")
        _check_password(dto.password)
        user = self._insert_user(session, email=dto.email, password=dto.password, name=dto.name, role=UserRole.USER)
        logger.info("account.registered")
        return UserRead.model_validate(user)

    def authenticate(self, session: Session, dto: LoginRequest) -> tuple[UserRead, str]:
        if not dto.email or not dto.password:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="email and password are required")

        user = session.scalar(select(User).where(User.email == _normalize_email(dto.email)))
        if user is None or not verify_password(dto.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid email or password")

        token = create_access_token(str(user.id), user.email, user.role)
        return UserRead.model_validate(user), token

    def list_users(self, session: Session) -> list[AdminUserRead]:
        project_count = (
            select(func.count(Project.id)).where(Project.owner_id == User.id).correlate(User).scalar_subquery()
        )
        rows = session.execute(select(User, project_count).order_by(User.created_at.desc())).all()
        return [
            AdminUserRead.model_validate(user).model_copy(update={"project_count": count or 0})
            for user, count in rows
        ]

    def create_user(self, session: Session, dto: AdminUserCreate) -> UserRead:
        if not dto.email or not dto.password:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="email and password are required")
        _check_password(dto.password)
        role = _check_role(dto.role) if dto.role else UserRole.USER
        user = self._insert_user(session, email=dto.email, password=dto.password, name=dto.name, role=role)
        return UserRead.model_validate(user)

    def update_user(self, session: Session, user_id: uuid.UUID, dto: AdminUserUpdate) -> UserRead:
        user = self._get_user(session, user_id)

        if dto.role:
            new_role = _check_role(dto.role)
            if user.role == UserRole.ADMIN and new_role == UserRole.USER and self._count_admins(session) <= 1:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot demote the last admin")
            user.role = new_role

        if "name" in dto.model_fields_set:
            user.name = dto.name or None

        if dto.password:
            _check_password(dto.password)
            user.password_hash = hash_password(dto.password)

        session.commit()
        session.refresh(user)
        return UserRead.model_validate(user)

    def delete_user(self, session: Session, actor_id: str, user_id: uuid.UUID) -> None:
        user = self._get_user(session, user_id)
        if str(user.id) == actor_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot delete your own account")
        if user.role == UserRole.ADMIN and self._count_admins(session) <= 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot delete the last admin")

        session.delete(user)
        session.commit()


account_service = AccountService()
