from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from aiwidget.db import get_db
from aiwidget.auth import decode_access_token
from aiwidget.models import User
from aiwidget.utils.cookie_auth import get_token_from_cookie
from aiwidget.services.assistant import AssistantBridge
from aiwidget.services.notifications import TelegramNotifier
from typing import Optional

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current user from JWT token (header or cookie)"""
    token = credentials.credentials if credentials else get_token_from_cookie(request)
    if not token:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(token)
    if payload is None:
        raise _unauthorized("Invalid authentication credentials")

    email = payload.get("sub")
    if not email:
        raise _unauthorized("Invalid authentication credentials")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise _unauthorized("User not found")

    request.state.user_id = str(user.id)
    return user


def get_assistant_bridge(request: Request) -> AssistantBridge:
    return request.app.state.assistant_bridge


def get_notifier(request: Request) -> TelegramNotifier:
    return request.app.state.notifier
