"""
Webhook endpoint for the notification bot.

Telegram delivers bot updates here; the answer is returned inline as a
``sendMessage`` method call in the webhook response.
"""
import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.orm import Session

from aiwidget.config import settings
from aiwidget.db import get_db
from aiwidget.exceptions import AuthenticationError
from aiwidget.services.notifications import build_bot_reply

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/telegram", tags=["telegram"])


@router.post("/webhook")
def telegram_webhook(
    update: Dict[str, Any] = Body(...),
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    expected = settings.TELEGRAM_WEBHOOK_SECRET
    if expected and not secrets.compare_digest(x_telegram_bot_api_secret_token or "", expected):
        raise AuthenticationError("Invalid webhook secret", error_code="invalid_webhook_secret")

    reply = build_bot_reply(db, update)
    return reply or {"ok": True}
