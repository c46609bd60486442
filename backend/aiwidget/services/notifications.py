"""
Telegram notifications for project owners.

Delivery is fire-and-forget: the notify_* helpers never raise, a failed send
is only logged. Projects are bound to a Telegram chat through one-time link
secrets handed out by the bot.
"""
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aiwidget.models import Chat, Project, TelegramLinkToken
from aiwidget.services.contacts import Contact
from aiwidget.utils.retry import retry_external_api

logger = logging.getLogger(__name__)

LINK_SECRET_BYTES = 5
LINK_SECRET_ATTEMPTS = 5

HELP_TEXT = (
    "To get notified about new conversations:\n"
    "1) Send /code to receive a link code.\n"
    "2) Open the project settings in the admin panel and paste the code."
)
HINT_TEXT = "Send /code to receive a code for linking notifications."


class NotificationError(Exception):
    """Telegram rejected or failed to deliver a message."""


class TelegramNotifier:
    def __init__(
        self,
        bot_token: Optional[str],
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> "TelegramNotifier":
        return cls(settings.TELEGRAM_BOT_TOKEN, api_base=settings.TELEGRAM_API_BASE)

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    @retry_external_api
    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, json=payload)
        if response.status_code >= 400:
            raise NotificationError(f"telegram_error_{response.status_code}: {response.text}")
        return response.json()

    async def send_message(self, tg_chat_id: Optional[str], text: str) -> bool:
        """Send a plain text message. Returns False when there is nothing to do."""
        if not self.configured or not tg_chat_id or not text:
            return False
        await self._call("sendMessage", {"chat_id": tg_chat_id, "text": text})
        return True

    async def _notify(self, project: Project, text: str, event: str) -> bool:
        if not project.notify_channel_id or not self.configured:
            return False
        try:
            return await self.send_message(project.notify_channel_id, text)
        except (NotificationError, httpx.HTTPError) as exc:
            logger.warning(
                f"Telegram notification failed: {exc}",
                extra={"event": event, "project_id": str(project.id)},
            )
            return False

    async def notify_new_chat(self, project: Project, chat: Chat) -> bool:
        title = f'"{project.name}"' if project.name else "your website"
        text = (
            f"A new conversation has started on {title}.\n"
            f"Chat ID: {chat.id}.\n"
            "Take a look in the admin panel."
        )
        return await self._notify(project, text, "notify_new_chat")

    async def notify_contacts(self, project: Project, chat: Chat, contacts: List[Contact]) -> bool:
        if not contacts:
            return False
        lines = [f"- {contact.type}: {contact.value}" for contact in contacts]
        text = (
            f'A visitor on "{project.name}" left contact details:\n'
            + "\n".join(lines)
            + f"\nChat ID: {chat.id}."
        )
        return await self._notify(project, text, "notify_contacts")


def issue_link_secret(db: Session, tg_chat_id: str, username: Optional[str] = None) -> str:
    """Store and return a fresh one-time secret for linking ``tg_chat_id`` to a project."""
    if not tg_chat_id:
        raise ValueError("tg_chat_id is required")

    for attempt in range(1, LINK_SECRET_ATTEMPTS + 1):
        token = TelegramLinkToken(
            secret=secrets.token_hex(LINK_SECRET_BYTES),
            tg_chat_id=str(tg_chat_id),
            username=username,
        )
        db.add(token)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Link secret collision, attempt {attempt}")
            if attempt == LINK_SECRET_ATTEMPTS:
                raise
            continue
        return token.secret
    raise RuntimeError("failed to generate link secret")


def consume_link_secret(db: Session, secret: str) -> Optional[TelegramLinkToken]:
    """Mark the secret used and return it; unknown or already used secrets give None."""
    if not secret:
        return None
    token = (
        db.query(TelegramLinkToken)
        .filter(TelegramLinkToken.secret == secret.strip().lower(), TelegramLinkToken.used_at.is_(None))
        .first()
    )
    if token is None:
        return None
    token.used_at = datetime.utcnow()
    db.commit()
    db.refresh(token)
    return token


def build_bot_reply(db: Session, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Answer one Telegram bot update.

    Returns a ``sendMessage`` payload suitable as a webhook response, or None
    for updates that need no answer.
    """
    message = update.get("message") or {}
    chat = message.get("chat") or {}
    text = (message.get("text") or "").strip()
    if not chat.get("id"):
        return None

    command = text.split()[0].split("@")[0].lower() if text.startswith("/") else ""
    if command in ("/start", "/code"):
        try:
            secret = issue_link_secret(db, str(chat["id"]), chat.get("username"))
        except Exception as exc:
            logger.error(f"Failed to issue link secret: {exc}", exc_info=True)
            reply = "Could not issue a code. Please try again later."
        else:
            reply = (
                "Hi! This is the AI Widget notification bot.\n"
                f"Your link code: {secret}\n\n"
                "Paste it into the project settings in the admin panel "
                "to get notified about new conversations."
            )
    elif command == "/help":
        reply = HELP_TEXT
    elif command:
        return None
    else:
        reply = HINT_TEXT

    return {"method": "sendMessage", "chat_id": chat["id"], "text": reply}
