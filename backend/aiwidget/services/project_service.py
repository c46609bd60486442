import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from aiwidget.exceptions import NotFoundError, ValidationError
from aiwidget.models import Project, User
from aiwidget.rbac import check_full_access, ensure_project_access, has_permission
from aiwidget.schemas import ProjectCreate, ProjectUpdate
from aiwidget.services.notifications import consume_link_secret

logger = logging.getLogger(__name__)


def get_project(db: Session, project_id: UUID) -> Optional[Project]:
    """Get project by ID"""
    return db.query(Project).filter(Project.id == project_id).first()


def get_project_for_user(db: Session, project_id: UUID, user: User) -> Project:
    """Project visible to ``user``; anything else is reported as missing."""
    return ensure_project_access(user, get_project(db, project_id), str(project_id))


def list_projects(db: Session, user: User) -> List[Project]:
    query = db.query(Project)
    if not check_full_access(user.role):
        query = query.filter(Project.owner_id == user.id)
    return query.order_by(Project.created_at.desc()).all()


def _resolve_owner(db: Session, user: User, requested_owner: Optional[UUID]) -> Optional[UUID]:
    if requested_owner is None or not has_permission(user.role, "assign_owner"):
        return user.id
    owner = db.query(User).filter(User.id == requested_owner).first()
    if owner is None:
        raise NotFoundError("User", str(requested_owner))
    return owner.id


def create_project(db: Session, data: ProjectCreate, user: User) -> Project:
    """Create a new project owned by the caller (admins may name another owner)."""
    project = Project(
        name=data.name.strip(),
        assistant_id=data.assistant_id.strip(),
        provider_credential=data.openai_api_key.strip(),
        instructions=data.instructions,
        allowed_origins=data.allowed_origins,
        owner_id=_resolve_owner(db, user, data.owner_id),
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info(
        f"Project created: {project.name}",
        extra={"event": "project_created", "project_id": str(project.id), "user_id": str(user.id)},
    )
    return project


def update_project(db: Session, project: Project, data: ProjectUpdate, user: User) -> Project:
    """Apply a partial update; only fields present in the request change."""
    update_data = data.model_dump(exclude_unset=True)

    if "name" in update_data and update_data["name"] is not None:
        project.name = update_data["name"].strip()
    if "assistant_id" in update_data and update_data["assistant_id"] is not None:
        project.assistant_id = update_data["assistant_id"].strip()
    if "openai_api_key" in update_data and update_data["openai_api_key"] is not None:
        project.provider_credential = update_data["openai_api_key"].strip()
    if "instructions" in update_data and update_data["instructions"] is not None:
        project.instructions = update_data["instructions"]
    if "allowed_origins" in update_data and update_data["allowed_origins"] is not None:
        project.allowed_origins = update_data["allowed_origins"]
    if "owner_id" in update_data and has_permission(user.role, "assign_owner"):
        owner_id = update_data["owner_id"]
        if owner_id is not None and db.query(User).filter(User.id == owner_id).first() is None:
            raise NotFoundError("User", str(owner_id))
        project.owner_id = owner_id

    secret = (update_data.get("telegram_secret") or "").strip()
    if secret:
        token = consume_link_secret(db, secret)
        if token is None:
            raise ValidationError("Telegram code is invalid or already used", error_code="telegram_secret_invalid")
        project.notify_channel_id = token.tg_chat_id
        project.notify_connected_at = datetime.utcnow()

    db.commit()
    db.refresh(project)
    logger.info(
        f"Project updated: {project.id}",
        extra={"event": "project_updated", "project_id": str(project.id), "user_id": str(user.id)},
    )
    return project


def unlink_telegram(db: Session, project: Project) -> Project:
    project.notify_channel_id = None
    project.notify_connected_at = None
    db.commit()
    db.refresh(project)
    return project


def delete_project(db: Session, project: Project) -> None:
    """Delete a project together with its chats and messages."""
    project_id = project.id
    db.delete(project)
    db.commit()
    logger.info(f"Project deleted: {project_id}", extra={"event": "project_deleted", "project_id": str(project_id)})
