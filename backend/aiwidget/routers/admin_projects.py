from fastapi import APIRouter, Depends, Query, status
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from aiwidget.db import get_db
from aiwidget.deps import get_current_user, get_assistant_bridge
from aiwidget.exceptions import ValidationError
from aiwidget.models import User, ChatMode, ChatStatus
from aiwidget.schemas import (
    ProjectCreate,
    ProjectUpdate,
    ProjectResponse,
    ChatResponse,
    ProjectStats,
    AssistantInstructionsUpdate,
    AssistantConfigResponse,
)
from aiwidget.services import chat_store
from aiwidget.services import project_service
from aiwidget.services.analytics_service import AnalyticsService
from aiwidget.services.assistant import AssistantBridge

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/projects", tags=["projects"])


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Projects visible to the caller (admins see every tenant)"""
    return project_service.list_projects(db, current_user)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    data: ProjectCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return project_service.create_project(db, data, current_user)


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return project_service.get_project_for_user(db, project_id, current_user)


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: UUID,
    data: ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Partial update; ``telegram_secret`` links the bot chat that issued it"""
    project = project_service.get_project_for_user(db, project_id, current_user)
    return project_service.update_project(db, project, data, current_user)


@router.delete("/{project_id}")
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project = project_service.get_project_for_user(db, project_id, current_user)
    project_service.delete_project(db, project)
    return {"ok": True}


@router.delete("/{project_id}/telegram", response_model=ProjectResponse)
def unlink_telegram(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project = project_service.get_project_for_user(db, project_id, current_user)
    return project_service.unlink_telegram(db, project)


def _require_assistant(project) -> None:
    if not project.assistant_id:
        raise ValidationError("Project has no assistant_id", error_code="assistant_id_missing")
    if not project.provider_credential:
        raise ValidationError("Project has no OpenAI API key", error_code="openai_api_key_missing")


@router.get("/{project_id}/assistant-instructions", response_model=AssistantConfigResponse)
async def get_assistant_instructions(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
):
    """Instructions stored on the provider-side assistant"""
    project = await run_in_threadpool(project_service.get_project_for_user, db, project_id, current_user)
    _require_assistant(project)
    return await bridge.fetch_assistant_config(project.provider_credential, project.assistant_id)


@router.put("/{project_id}/assistant-instructions", response_model=AssistantConfigResponse)
async def update_assistant_instructions(
    project_id: UUID,
    data: AssistantInstructionsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
):
    project = await run_in_threadpool(project_service.get_project_for_user, db, project_id, current_user)
    _require_assistant(project)
    return await bridge.update_assistant_config(project.provider_credential, project.assistant_id, data.instructions)


@router.get("/{project_id}/chats", response_model=List[ChatResponse])
def list_project_chats(
    project_id: UUID,
    chat_status: Optional[ChatStatus] = Query(None, alias="status"),
    mode: Optional[ChatMode] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Chats of a project, newest activity first"""
    project = project_service.get_project_for_user(db, project_id, current_user)
    return chat_store.list_chats(db, project.id, status=chat_status, mode=mode)


@router.get("/{project_id}/stats", response_model=ProjectStats)
def project_stats(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project = project_service.get_project_for_user(db, project_id, current_user)
    return AnalyticsService.get_project_stats(db, project)
