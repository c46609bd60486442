from typing import Optional

from fastapi import Depends
from aiwidget.models import Role, User, Project
from aiwidget.exceptions import AuthorizationError, NotFoundError


# Permission mapping for each role
ROLE_PERMISSIONS = {
    Role.ADMIN: {
        "full_access": True,
        "manage_users": True,
        "assign_owner": True,
    },
    Role.USER: {
        "manage_own_projects": True,
    },
}


def has_permission(user_role: Role, permission: str) -> bool:
    """Check if a role has a specific permission"""
    return ROLE_PERMISSIONS.get(user_role, {}).get(permission, False)


def check_full_access(user_role: Role) -> bool:
    """Check if user sees every tenant (Admin)"""
    return has_permission(user_role, "full_access")


def can_access_project(user: User, project: Project) -> bool:
    if check_full_access(user.role):
        return True
    return project.owner_id is not None and project.owner_id == user.id


def ensure_project_access(user: User, project: Optional[Project], identifier: Optional[str] = None) -> Project:
    """
    Return the project if the caller may see it.

    Missing and foreign projects both answer 404 so that tenants cannot probe
    each other's identifiers.
    """
    if project is None or not can_access_project(user, project):
        raise NotFoundError("Project", identifier)
    return project


def require_permission(permission: str):
    """Dependency factory requiring a role permission"""
    from aiwidget.deps import get_current_user

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user.role, permission):
            raise AuthorizationError("Access denied. Admin role required.")
        return current_user
    return dependency
