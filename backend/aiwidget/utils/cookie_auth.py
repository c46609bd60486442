"""
JWT authentication with httpOnly cookies.
"""
from fastapi import Response, Request
from typing import Optional
import logging

from aiwidget.config import settings
from aiwidget.auth import create_access_token

logger = logging.getLogger(__name__)

# Cookie settings
COOKIE_NAME = "aiw_session"
COOKIE_MAX_AGE = settings.ACCESS_TOKEN_EXPIRE_HOURS * 3600


def set_auth_cookie(response: Response, email: str, role: str) -> str:
    """
    Create JWT token and set it as httpOnly cookie.

    Args:
        response: FastAPI Response object
        email: User email for token subject
        role: Role claim carried in the token

    Returns:
        The access token (also usable as a bearer token)
    """
    access_token = create_access_token(data={"sub": email, "role": role})

    response.set_cookie(
        key=COOKIE_NAME,
        value=access_token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=COOKIE_MAX_AGE,
        path="/"
    )

    logger.info(f"Auth cookie set for user: {email}")

    return access_token


def get_token_from_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(COOKIE_NAME)


def clear_auth_cookie(response: Response):
    """Clear authentication cookie (for logout)."""
    response.delete_cookie(
        key=COOKIE_NAME,
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )

    logger.info("Auth cookie cleared")
