from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
import logging

from aiwidget.db import get_db
from aiwidget.models import User
from aiwidget.schemas import UserCreate, UserResponse, PasswordUpdate
from aiwidget.auth import get_password_hash
from aiwidget.exceptions import ConflictError, NotFoundError, ValidationError
from aiwidget.rbac import require_permission

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/users", tags=["users"])

require_user_admin = require_permission("manage_users")


def _get_user(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User", str(user_id))
    return user


@router.get("", response_model=List[UserResponse])
def list_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_admin)
):
    return db.query(User).order_by(User.created_at.asc()).all()


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    data: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_admin)
):
    """Create a new user (Admin only)"""
    if db.query(User).filter(User.email == data.email).first():
        raise ConflictError("User with this email already exists", error_code="user_exists")

    user = User(
        email=data.email,
        password_hash=get_password_hash(data.password),
        role=data.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"User created: {user.email}", extra={"event": "user_created", "user_id": str(user.id)})
    return user


@router.put("/{user_id}/password")
def update_password(
    user_id: UUID,
    data: PasswordUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_admin)
):
    user = _get_user(db, user_id)
    user.password_hash = get_password_hash(data.password)
    db.commit()
    logger.info(f"Password changed for {user.email}", extra={"event": "password_changed", "user_id": str(user.id)})
    return {"ok": True}


@router.delete("/{user_id}")
def delete_user(
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_admin)
):
    """Delete a user; their projects stay, without an owner"""
    if user_id == current_user.id:
        raise ValidationError("You cannot delete your own account", error_code="cannot_delete_self")
    user = _get_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info(f"User deleted: {user_id}", extra={"event": "user_deleted", "user_id": str(user_id)})
    return {"ok": True}
