"""
Tests for operator chat endpoints (takeover, release, replies).
"""
import uuid

import httpx
import openai
import pytest
from fastapi import status

from aiwidget.models import Chat, ChatMode, MessageRole
from aiwidget.services import chat_store
from aiwidget.services.assistant import OPERATOR_PREFIX


@pytest.mark.integration
class TestChatListing:

    def test_list_project_chats(self, client, project, chat, user_auth_headers):
        response = client.get(f"/api/admin/projects/{project.id}/chats", headers=user_auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [c["id"] for c in data] == [str(chat.id)]
        assert data[0]["display_name"] == chat.display_name
        assert data[0]["mode"] == "assistant"

    def test_filter_by_mode_and_status(self, client, project, chat, db_session, user_auth_headers):
        other = chat_store.create_chat(db_session, project.id, "thread_2")
        chat_store.set_chat_mode(db_session, other, ChatMode.HUMAN)

        human = client.get(
            f"/api/admin/projects/{project.id}/chats", params={"mode": "human"}, headers=user_auth_headers
        ).json()
        assert [c["id"] for c in human] == [str(other.id)]

        closed = client.get(
            f"/api/admin/projects/{project.id}/chats", params={"status": "closed"}, headers=user_auth_headers
        ).json()
        assert closed == []

    def test_most_recent_activity_first(self, client, project, chat, db_session, user_auth_headers):
        newer = chat_store.create_chat(db_session, project.id, "thread_2")
        chat_store.append_message(db_session, chat.id, MessageRole.USER, "bump")

        data = client.get(f"/api/admin/projects/{project.id}/chats", headers=user_auth_headers).json()
        assert [c["id"] for c in data] == [str(chat.id), str(newer.id)]

    def test_foreign_tenant_sees_nothing(self, client, project, chat, other_auth_headers):
        response = client.get(f"/api/admin/projects/{project.id}/chats", headers=other_auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND

        response = client.get(f"/api/admin/chats/{chat.id}/messages", headers=other_auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "chat_not_found"


@pytest.mark.integration
class TestTakeover:

    def test_takeover_and_release(self, client, chat, db_session, user_auth_headers):
        response = client.post(f"/api/admin/chats/{chat.id}/takeover", headers=user_auth_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ok": True, "mode": "human"}

        # idempotent
        response = client.post(f"/api/admin/chats/{chat.id}/takeover", headers=user_auth_headers)
        assert response.json()["mode"] == "human"

        response = client.post(f"/api/admin/chats/{chat.id}/release", headers=user_auth_headers)
        assert response.json() == {"ok": True, "mode": "assistant"}

        db_session.expire_all()
        assert db_session.get(Chat, chat.id).mode == ChatMode.ASSISTANT

    def test_admin_can_take_over_any_chat(self, client, chat, auth_headers):
        response = client.post(f"/api/admin/chats/{chat.id}/takeover", headers=auth_headers)
        assert response.status_code == status.HTTP_200_OK

    def test_unknown_chat(self, client, user_auth_headers):
        response = client.post(f"/api/admin/chats/{uuid.uuid4()}/takeover", headers=user_auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.integration
class TestOperatorMessage:

    def test_operator_reply_stored_and_injected(self, client, chat, db_session, user_auth_headers, fake_openai):
        response = client.post(
            f"/api/admin/chats/{chat.id}/message",
            json={"text": " We will call you back "},
            headers=user_auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["role"] == "human"
        assert response.json()["content"] == "We will call you back"
        assert fake_openai.calls == [
            ("messages.create", "thread_test", "assistant", f"{OPERATOR_PREFIX}We will call you back")
        ]

        messages = client.get(f"/api/admin/chats/{chat.id}/messages", headers=user_auth_headers).json()["items"]
        assert [(m["role"], m["content"]) for m in messages] == [("human", "We will call you back")]

    def test_sync_failure_keeps_message(self, client, chat, db_session, user_auth_headers, fake_openai):
        fake_openai.errors["messages.create"] = openai.NotFoundError(
            "thread gone",
            response=httpx.Response(404, request=httpx.Request("POST", "https://api.openai.com/v1/threads")),
            body=None,
        )

        response = client.post(
            f"/api/admin/chats/{chat.id}/message", json={"text": "Hello"}, headers=user_auth_headers
        )

        assert response.status_code == status.HTTP_200_OK
        assert len(chat_store.list_messages(db_session, chat.id)) == 1

    def test_blank_reply_rejected(self, client, chat, user_auth_headers):
        response = client.post(
            f"/api/admin/chats/{chat.id}/message", json={"text": "   "}, headers=user_auth_headers
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "empty_message"


@pytest.mark.integration
def test_delete_chat(client, chat, db_session, user_auth_headers):
    chat_store.append_message(db_session, chat.id, MessageRole.USER, "hi")

    response = client.delete(f"/api/admin/chats/{chat.id}", headers=user_auth_headers)

    assert response.status_code == status.HTTP_200_OK
    db_session.expire_all()
    assert db_session.get(Chat, chat.id) is None
    assert chat_store.list_messages(db_session, chat.id) == []
