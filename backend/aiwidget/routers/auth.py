from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session
import logging
from aiwidget.db import get_db
from aiwidget.models import User
from aiwidget.schemas import LoginRequest, Token, SessionResponse, SessionUser
from aiwidget.auth import verify_password
from aiwidget.deps import get_current_user
from aiwidget.rate_limit import limiter, AUTH_RATE_LIMIT
from aiwidget.utils.cookie_auth import set_auth_cookie, clear_auth_cookie

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Token)
@limiter.limit(AUTH_RATE_LIMIT)
def login(login_data: LoginRequest, response: Response, request: Request, db: Session = Depends(get_db)):
    """Login with email and password"""
    email = login_data.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()

    if not user or not verify_password(login_data.password, user.password_hash):
        logger.warning("Failed login attempt", extra={"event": "login_failed"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = set_auth_cookie(response, user.email, user.role.value)
    logger.info(f"User logged in: {user.email}", extra={"event": "login", "user_id": str(user.id)})
    return Token(access_token=access_token, role=user.role)


@router.post("/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"ok": True}


@router.get("/session", response_model=SessionResponse)
def session(current_user: User = Depends(get_current_user)):
    """Who is logged in"""
    return SessionResponse(role=current_user.role, user=SessionUser.model_validate(current_user))
