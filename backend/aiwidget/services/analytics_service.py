"""
Usage statistics for projects.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from aiwidget.models import Chat, ChatMode, ChatStatus, Message, MessageRole, Project

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Aggregates chat and message counts per project."""

    @staticmethod
    def get_project_stats(db: Session, project: Project) -> Dict[str, Any]:
        """
        Chat counts by status and mode, message counts by role and the time
        of the latest activity for one project.
        """
        chats_by_status = {status.value: 0 for status in ChatStatus}
        for status, count in (
            db.query(Chat.status, func.count(Chat.id))
            .filter(Chat.project_id == project.id)
            .group_by(Chat.status)
            .all()
        ):
            chats_by_status[status.value] = count

        chats_by_mode = {mode.value: 0 for mode in ChatMode}
        for mode, count in (
            db.query(Chat.mode, func.count(Chat.id))
            .filter(Chat.project_id == project.id)
            .group_by(Chat.mode)
            .all()
        ):
            chats_by_mode[mode.value] = count

        messages_by_role = {role.value: 0 for role in MessageRole}
        for role, count in (
            db.query(Message.role, func.count(Message.id))
            .join(Chat, Chat.id == Message.chat_id)
            .filter(Chat.project_id == project.id)
            .group_by(Message.role)
            .all()
        ):
            messages_by_role[role.value] = count

        last_activity_at = (
            db.query(func.max(Chat.updated_at)).filter(Chat.project_id == project.id).scalar()
        )

        return {
            "project_id": project.id,
            "name": project.name,
            "chats_total": sum(chats_by_status.values()),
            "chats_by_status": chats_by_status,
            "chats_by_mode": chats_by_mode,
            "messages_by_role": messages_by_role,
            "last_activity_at": last_activity_at,
        }

    @staticmethod
    def get_overview(db: Session, projects: List[Project]) -> Dict[str, Any]:
        """Totals across the given projects plus a per-project breakdown."""
        per_project = [AnalyticsService.get_project_stats(db, project) for project in projects]
        return {
            "projects_total": len(per_project),
            "chats_total": sum(item["chats_total"] for item in per_project),
            "messages_total": sum(sum(item["messages_by_role"].values()) for item in per_project),
            "projects": per_project,
        }
