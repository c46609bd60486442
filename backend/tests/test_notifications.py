"""
Tests for Telegram notifications, link secrets and the bot webhook.
"""
import json
import uuid
from types import SimpleNamespace

import httpx
import pytest
from fastapi import status

from aiwidget.config import settings
from aiwidget.models import TelegramLinkToken
from aiwidget.services.contacts import Contact
from aiwidget.services.notifications import (
    HELP_TEXT,
    HINT_TEXT,
    TelegramNotifier,
    build_bot_reply,
    consume_link_secret,
    issue_link_secret,
)


def recording_transport(status_code=200):
    sent = []

    def handler(request):
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return sent, httpx.MockTransport(handler)


def _project(**overrides):
    values = {"id": uuid.uuid4(), "name": "Acme Support", "notify_channel_id": "777"}
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.unit
class TestTelegramNotifier:

    @pytest.mark.asyncio
    async def test_new_chat_notification(self):
        sent, transport = recording_transport()
        notifier = TelegramNotifier("123:abc", transport=transport)
        chat = SimpleNamespace(id=uuid.uuid4())

        assert await notifier.notify_new_chat(_project(), chat) is True

        path, payload = sent[0]
        assert path == "/bot123:abc/sendMessage"
        assert payload["chat_id"] == "777"
        assert '"Acme Support"' in payload["text"]
        assert str(chat.id) in payload["text"]

    @pytest.mark.asyncio
    async def test_contacts_notification_lists_contacts(self):
        sent, transport = recording_transport()
        notifier = TelegramNotifier("123:abc", transport=transport)
        contacts = [Contact("email", "a@b.com"), Contact("phone", "+1 555 123 4567")]

        assert await notifier.notify_contacts(_project(), SimpleNamespace(id=uuid.uuid4()), contacts)

        text = sent[0][1]["text"]
        assert "- email: a@b.com" in text
        assert "- phone: +1 555 123 4567" in text

    @pytest.mark.asyncio
    async def test_unlinked_project_is_skipped(self):
        sent, transport = recording_transport()
        notifier = TelegramNotifier("123:abc", transport=transport)

        assert await notifier.notify_new_chat(_project(notify_channel_id=None), SimpleNamespace(id=1)) is False
        assert sent == []

    @pytest.mark.asyncio
    async def test_unconfigured_bot_is_skipped(self):
        sent, transport = recording_transport()
        notifier = TelegramNotifier(None, transport=transport)

        assert not notifier.configured
        assert await notifier.notify_new_chat(_project(), SimpleNamespace(id=1)) is False
        assert sent == []

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self):
        sent, transport = recording_transport(status_code=403)
        notifier = TelegramNotifier("123:abc", transport=transport)

        assert await notifier.notify_new_chat(_project(), SimpleNamespace(id=1)) is False
        assert len(sent) == 1


@pytest.mark.unit
class TestLinkSecrets:

    def test_issue_and_consume_once(self, db_session):
        secret = issue_link_secret(db_session, "555", "shop_owner")

        assert len(secret) == 10
        token = consume_link_secret(db_session, secret.upper())
        assert token.tg_chat_id == "555"
        assert token.used_at is not None
        assert consume_link_secret(db_session, secret) is None

    def test_unknown_secret(self, db_session):
        assert consume_link_secret(db_session, "nope") is None
        assert consume_link_secret(db_session, "") is None

    def test_chat_id_required(self, db_session):
        with pytest.raises(ValueError):
            issue_link_secret(db_session, "")


@pytest.mark.unit
class TestBotReplies:

    def _update(self, text, chat_id=555):
        return {"message": {"text": text, "chat": {"id": chat_id, "username": "shop_owner"}}}

    def test_start_issues_code(self, db_session):
        reply = build_bot_reply(db_session, self._update("/start"))

        assert reply["method"] == "sendMessage"
        assert reply["chat_id"] == 555
        token = db_session.query(TelegramLinkToken).one()
        assert token.secret in reply["text"]
        assert token.username == "shop_owner"

    def test_code_with_bot_suffix(self, db_session):
        reply = build_bot_reply(db_session, self._update("/code@aiwidget_bot"))
        assert db_session.query(TelegramLinkToken).count() == 1
        assert "link code" in reply["text"]

    def test_help(self, db_session):
        assert build_bot_reply(db_session, self._update("/help"))["text"] == HELP_TEXT

    def test_plain_text_gets_hint(self, db_session):
        assert build_bot_reply(db_session, self._update("hello bot"))["text"] == HINT_TEXT

    def test_unknown_command_ignored(self, db_session):
        assert build_bot_reply(db_session, self._update("/settings")) is None

    def test_update_without_chat(self, db_session):
        assert build_bot_reply(db_session, {"edited_message": {}}) is None


@pytest.mark.integration
class TestWebhook:

    def test_webhook_replies_inline(self, client, db_session):
        response = client.post(
            "/api/telegram/webhook",
            json={"message": {"text": "/help", "chat": {"id": 42}}},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"method": "sendMessage", "chat_id": 42, "text": HELP_TEXT}

    def test_webhook_without_reply(self, client, db_session):
        response = client.post("/api/telegram/webhook", json={"callback_query": {}})
        assert response.json() == {"ok": True}

    def test_webhook_secret_enforced(self, client, db_session, monkeypatch):
        monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

        denied = client.post("/api/telegram/webhook", json={"callback_query": {}})
        assert denied.status_code == status.HTTP_401_UNAUTHORIZED
        assert denied.json()["error_code"] == "invalid_webhook_secret"

        allowed = client.post(
            "/api/telegram/webhook",
            json={"callback_query": {}},
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )
        assert allowed.status_code == status.HTTP_200_OK
