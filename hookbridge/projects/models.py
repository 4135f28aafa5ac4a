from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hookbridge.bitrix.schemas import ConnectionStatus
from hookbridge.core.database import Base

if TYPE_CHECKING:
    from hookbridge.accounts.models import User


WEBHOOK_PATH_PREFIX = "/api/webhook/bitrix/"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_webhook_path() -> str:
    return f"{WEBHOOK_PATH_PREFIX}{secrets.token_hex(32)}"


class ProjectStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ARCHIVED = "ARCHIVED"


class Project(Base):
    __tablename__ = "project"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ProjectStatus.ACTIVE, server_default="ACTIVE")
    bitrix_webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    owner: Mapped[User] = relationship("User", back_populates="projects")
    connections: Mapped[list[Connection]] = relationship(
        "Connection",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Connection.created_at",
    )

    __table_args__ = (Index("ix_project_owner_created", "owner_id", "created_at"),)


class Connection(Base):
    __tablename__ = "connection"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="BITRIX", server_default="BITRIX")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ConnectionStatus.ACTIVE,
        server_default="ACTIVE",
    )
    config: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_mapping: Mapped[str | None] = mapped_column(Text, nullable=True)
    funnel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stage_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    webhook_url: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, default=generate_webhook_path)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("project.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="connections")
