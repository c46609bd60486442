from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from aiwidget.db import get_db
from aiwidget.deps import get_current_user
from aiwidget.models import User
from aiwidget.schemas import StatsOverview
from aiwidget.services import project_service
from aiwidget.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/admin/stats", tags=["stats"])


@router.get("", response_model=StatsOverview)
def stats_overview(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Usage across the projects the caller can see"""
    projects = project_service.list_projects(db, current_user)
    return AnalyticsService.get_overview(db, projects)
