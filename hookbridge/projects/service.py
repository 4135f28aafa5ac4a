from __future__ import annotations

import json
import logging
import uuid

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from hookbridge.bitrix.dispatch import dispatch, resolve_category
from hookbridge.bitrix.errors import MalformedConfig, MissingCrmConfig
from hookbridge.bitrix.handlers import ClientFactory
from hookbridge.bitrix.mapping import FieldMappingRule, dump_field_mapping, parse_field_mapping
from hookbridge.bitrix.metadata import crm_metadata_cache
from hookbridge.bitrix.schemas import ConnectionCategory, DispatchTarget, validate_connection_config
from hookbridge.core.auth import AuthUser
from hookbridge.projects.models import Connection, Project
from hookbridge.projects.schemas import (
    AdminProjectRead,
    ConnectionCreate,
    ConnectionRead,
    ConnectionTestRequest,
    ConnectionTestResponse,
    ConnectionUpdate,
    FieldMappingInput,
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
)


logger = logging.getLogger("hookbridge.projects")


def _owner_id(user: AuthUser) -> uuid.UUID:
    try:
        return uuid.UUID(user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")


def _normalize_url(url: str | None) -> str | None:
    if url is None:
        return None
    stripped = url.strip()
    return stripped or None


def _serialize_config(category: ConnectionCategory, config: dict | None) -> str | None:
    if config is None:
        return None
    try:
        canonical = validate_connection_config(category, config)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        )
    return json.dumps(canonical)


def _serialize_field_mapping(field_mapping: FieldMappingInput) -> str | None:
    if field_mapping is None:
        return None
    if isinstance(field_mapping, str):
        try:
            rules = parse_field_mapping(field_mapping)
        except MalformedConfig as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    else:
        rules = [FieldMappingRule(source_field=item.source_field, target_field=item.target_field) for item in field_mapping]
    return dump_field_mapping(rules)


class ProjectService:
    def _get_project(self, session: Session, user: AuthUser, project_id: uuid.UUID) -> Project:
        project = session.get(Project, project_id)
        if project is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="project not found")
        if not user.is_admin and str(project.owner_id) != user.sub:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="access to project denied")
        return project

    def _get_connection(
        self,
        session: Session,
        user: AuthUser,
        project_id: uuid.UUID,
        connection_id: uuid.UUID,
    ) -> Connection:
        self._get_project(session, user, project_id)
        connection = session.scalar(
            select(Connection).where(Connection.id == connection_id, Connection.project_id == project_id)
        )
        if connection is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="connection not found")
        return connection

    def list_projects(self, session: Session, user: AuthUser) -> list[ProjectRead]:
        rows = session.scalars(
            select(Project).where(Project.owner_id == _owner_id(user)).order_by(Project.created_at.desc())
        ).all()
        return [ProjectRead.model_validate(row) for row in rows]

    def list_all_projects(self, session: Session) -> list[AdminProjectRead]:
        rows = session.scalars(
            select(Project).options(selectinload(Project.owner)).order_by(Project.created_at.desc())
        ).all()
        return [AdminProjectRead.model_validate(row) for row in rows]

    def create_project(self, session: Session, user: AuthUser, dto: ProjectCreate) -> ProjectRead:
        project = Project(
            name=dto.name.strip(),
            description=dto.description,
            status=dto.status,
            bitrix_webhook_url=_normalize_url(dto.bitrix_webhook_url),
            test_mode=dto.test_mode,
            owner_id=_owner_id(user),
        )
        session.add(project)
        session.commit()
        session.refresh(project)
        logger.info("project.created", extra={"project_id": str(project.id)})
        return ProjectRead.model_validate(project)

    def get_project(self, session: Session, user: AuthUser, project_id: uuid.UUID) -> ProjectRead:
        return ProjectRead.model_validate(self._get_project(session, user, project_id))

    def update_project(self, session: Session, user: AuthUser, project_id: uuid.UUID, dto: ProjectUpdate) -> ProjectRead:
        project = self._get_project(session, user, project_id)
        changes = dto.model_dump(exclude_unset=True)

        if changes.get("name") is not None:
            project.name = changes["name"].strip()
        if "description" in changes:
            project.description = changes["description"]
        if changes.get("status") is not None:
            project.status = changes["status"]
        if changes.get("test_mode") is not None:
            project.test_mode = changes["test_mode"]
        if "bitrix_webhook_url" in changes:
            new_url = _normalize_url(changes["bitrix_webhook_url"])
            if new_url != project.bitrix_webhook_url:
                crm_metadata_cache.invalidate(project.bitrix_webhook_url)
                project.bitrix_webhook_url = new_url

        session.commit()
        session.refresh(project)
        return ProjectRead.model_validate(project)

    def delete_project(self, session: Session, user: AuthUser, project_id: uuid.UUID) -> None:
        project = self._get_project(session, user, project_id)
        crm_metadata_cache.invalidate(project.bitrix_webhook_url)
        session.delete(project)
        session.commit()
        logger.info("project.deleted", extra={"project_id": str(project_id)})

    def get_crm_base_url(self, session: Session, user: AuthUser, project_id: uuid.UUID) -> str:
        project = self._get_project(session, user, project_id)
        if not project.bitrix_webhook_url:
            raise MissingCrmConfig("Bitrix webhook URL is not configured for this project")
        return project.bitrix_webhook_url

    def list_connections(self, session: Session, user: AuthUser, project_id: uuid.UUID) -> list[ConnectionRead]:
        project = self._get_project(session, user, project_id)
        return [ConnectionRead.from_model(connection) for connection in project.connections]

    def create_connection(
        self,
        session: Session,
        user: AuthUser,
        project_id: uuid.UUID,
        dto: ConnectionCreate,
    ) -> ConnectionRead:
        project = self._get_project(session, user, project_id)
        connection = Connection(
            name=dto.name.strip(),
            description=dto.description,
            category=dto.category,
            status=dto.status,
            config=_serialize_config(dto.category, dto.config),
            field_mapping=_serialize_field_mapping(dto.field_mapping),
            funnel_id=dto.funnel_id or None,
            stage_id=dto.stage_id or None,
            project_id=project.id,
        )
        session.add(connection)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="webhook path collision, retry")
        session.refresh(connection)
        logger.info(
            "connection.created",
            extra={"project_id": str(project.id), "connection_id": str(connection.id), "category": connection.category},
        )
        return ConnectionRead.from_model(connection)

    def get_connection(
        self,
        session: Session,
        user: AuthUser,
        project_id: uuid.UUID,
        connection_id: uuid.UUID,
    ) -> ConnectionRead:
        return ConnectionRead.from_model(self._get_connection(session, user, project_id, connection_id))

    def update_connection(
        self,
        session: Session,
        user: AuthUser,
        project_id: uuid.UUID,
        connection_id: uuid.UUID,
        dto: ConnectionUpdate,
    ) -> ConnectionRead:
        connection = self._get_connection(session, user, project_id, connection_id)
        changes = dto.model_fields_set

        if dto.name is not None:
            connection.name = dto.name.strip()
        if "description" in changes:
            connection.description = dto.description
        if dto.status is not None:
            connection.status = dto.status
        if "config" in changes:
            connection.config = _serialize_config(resolve_category(connection.category), dto.config)
        if "field_mapping" in changes:
            connection.field_mapping = _serialize_field_mapping(dto.field_mapping)
        if "funnel_id" in changes:
            connection.funnel_id = dto.funnel_id or None
        if "stage_id" in changes:
            connection.stage_id = dto.stage_id or None

        session.commit()
        session.refresh(connection)
        return ConnectionRead.from_model(connection)

    def delete_connection(
        self,
        session: Session,
        user: AuthUser,
        project_id: uuid.UUID,
        connection_id: uuid.UUID,
    ) -> None:
        connection = self._get_connection(session, user, project_id, connection_id)
        session.delete(connection)
        session.commit()

    def run_connection_test(
        self,
        session: Session,
        user: AuthUser,
        project_id: uuid.UUID,
        dto: ConnectionTestRequest,
        client_factory: ClientFactory,
    ) -> ConnectionTestResponse:
        """Run the dispatch pipeline for an unsaved connection against the project's CRM."""
        project = self._get_project(session, user, project_id)
        target = DispatchTarget(
            category=dto.category,
            crm_base_url=project.bitrix_webhook_url,
            config=json.dumps(dto.config) if dto.config is not None else None,
            field_mapping=_serialize_field_mapping(dto.field_mapping),
            funnel_id=dto.funnel_id or None,
            stage_id=dto.stage_id or None,
            test_mode=project.test_mode,
        )
        result = dispatch(target, dto.test_data, client_factory)
        return ConnectionTestResponse(
            success=True,
            id=result.bitrix_id,
            mapped_data=result.mapped_data,
            original_data=dto.test_data,
            result=result,
        )


project_service = ProjectService()
