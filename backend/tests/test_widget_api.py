"""
Tests for the public widget endpoints and the SSE relay behind them.
"""
import asyncio
import json
import time
import uuid

import httpx
import openai
import pytest
from fastapi import status

from aiwidget.models import Chat, ChatMode, ChatStatus, MessageRole, Project
from aiwidget.services import chat_store
from aiwidget.services.assistant import AssistantBridge, PollingRunStrategy


def parse_sse(body):
    """Split an event-stream body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        if not block.strip():
            continue
        name, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


async def no_sleep(seconds):
    return None


def stream(client, project_id, chat_id, message):
    response = client.get(
        f"/api/widget/{project_id}/chat/{chat_id}/stream",
        params={"message": message},
    )
    return response


@pytest.mark.integration
class TestStartChat:

    def test_start_creates_chat_and_thread(self, client, project, db_session, fake_openai):
        response = client.post(f"/api/widget/{project.id}/chat/start", json={"visitorId": "v-42"})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["mode"] == "assistant"
        chat = db_session.get(Chat, uuid.UUID(data["chatId"]))
        assert chat.thread_ref == "thread_test"
        assert chat.visitor_id == "v-42"
        assert ("threads.create",) in fake_openai.calls

    def test_start_without_body(self, client, project):
        response = client.post(f"/api/widget/{project.id}/chat/start")
        assert response.status_code == status.HTTP_200_OK

    def test_unknown_project(self, client, db_session):
        response = client.post(f"/api/widget/{uuid.uuid4()}/chat/start")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "project_not_found"

    def test_malformed_project_id(self, client, db_session):
        response = client.post("/api/widget/not-a-uuid/chat/start")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_project_without_key(self, client, project, db_session):
        project.provider_credential = ""
        db_session.commit()

        response = client.post(f"/api/widget/{project.id}/chat/start")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "openai_api_key_missing"

    def test_provider_rejects_key_no_chat_created(self, client, project, db_session, fake_openai):
        fake_openai.errors["threads.create"] = openai.AuthenticationError(
            "bad key",
            response=httpx.Response(401, request=httpx.Request("POST", "https://api.openai.com/v1/threads")),
            body=None,
        )

        response = client.post(f"/api/widget/{project.id}/chat/start")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "provider_auth_error"
        assert db_session.query(Chat).count() == 0


@pytest.mark.integration
class TestChatMessages:

    def test_messages_in_insertion_order(self, client, project, chat, db_session):
        for role, text in [
            (MessageRole.USER, "hi"),
            (MessageRole.ASSISTANT, "hello"),
            (MessageRole.HUMAN, "operator here"),
        ]:
            chat_store.append_message(db_session, chat.id, role, text)

        response = client.get(f"/api/widget/{project.id}/chat/{chat.id}/messages")

        assert response.status_code == status.HTTP_200_OK
        items = response.json()["items"]
        assert [(m["role"], m["content"]) for m in items] == [
            ("user", "hi"),
            ("assistant", "hello"),
            ("human", "operator here"),
        ]

    def test_chat_of_other_project_is_not_found(self, client, project, chat, db_session, other_user):
        other = Project(name="Other", owner_id=other_user.id, allowed_origins=[])
        db_session.add(other)
        db_session.commit()

        response = client.get(f"/api/widget/{other.id}/chat/{chat.id}/messages")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "chat_not_found"


@pytest.mark.integration
class TestStream:

    def test_assistant_answer(self, client, project, chat, db_session):
        response = stream(client, project.id, chat.id, "Hi there")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert response.headers["x-accel-buffering"] == "no"

        events = parse_sse(response.text)
        names = [name for name, _ in events]
        assert names[0] == "meta"
        assert events[0][1] == {"chatId": str(chat.id), "mode": "assistant"}
        assert "".join(d["t"] for n, d in events if n == "token") == "Hello!"
        assert names[-1] == "done"
        assert names.count("done") == 1

        stored = chat_store.list_messages(db_session, chat.id)
        assert [(m.role, m.content) for m in stored] == [
            (MessageRole.USER, "Hi there"),
            (MessageRole.ASSISTANT, "Hello!"),
        ]

    def test_instructions_combine_project_and_directive(self, client, project, chat, fake_openai):
        stream(client, project.id, chat.id, "Hi")

        run_call = next(call for call in fake_openai.calls if call[0] == "runs.create")
        instructions = run_call[3]
        assert instructions.startswith("Answer briefly.")
        assert "citations" in instructions

    def test_citations_are_stripped(self, client, project, chat, fake_openai, db_session):
        fake_openai.reply = "We open at 9【4:0†hours.txt】."

        events = parse_sse(stream(client, project.id, chat.id, "When?").text)

        tokens = "".join(d["t"] for n, d in events if n == "token")
        assert tokens == "We open at 9."
        stored = chat_store.list_messages(db_session, chat.id)
        assert stored[-1].content == "We open at 9."

    def test_streaming_transport(self, client, project, chat, fake_openai, stream_bridge):
        client.app.state.assistant_bridge = stream_bridge
        fake_openai.script_stream("Hel", "lo【1:0", "†a】", " world")

        events = parse_sse(stream(client, project.id, chat.id, "Hi").text)

        tokens = [d["t"] for n, d in events if n == "token"]
        assert tokens == ["Hel", "lo", " world"]
        assert events[-1][0] == "done"

    def test_human_mode_waits_for_operator(self, client, project, chat, db_session, fake_openai):
        chat_store.set_chat_mode(db_session, chat, ChatMode.HUMAN)

        events = parse_sse(stream(client, project.id, chat.id, "Is anyone there?").text)

        assert [name for name, _ in events] == ["waiting_for_human", "done"]
        assert not any(call[0] == "runs.create" for call in fake_openai.calls)
        stored = chat_store.list_messages(db_session, chat.id)
        assert [m.content for m in stored] == ["Is anyone there?"]

    @pytest.mark.parametrize("assistant_id, message", [
        ("", "assistant_id is empty for this project"),
        ("my-assistant", "assistant_id is malformed for this project"),
    ])
    def test_assistant_misconfigured(self, client, project, chat, db_session, assistant_id, message):
        project.assistant_id = assistant_id
        db_session.commit()

        events = parse_sse(stream(client, project.id, chat.id, "Hi").text)

        assert events == [("error", {"message": message}), ("done", {"chatId": str(chat.id)})]
        # the visitor message is still kept
        assert len(chat_store.list_messages(db_session, chat.id)) == 1

    def test_run_failure_reported(self, client, project, chat, fake_openai, db_session):
        fake_openai.run_statuses = ["failed"]

        events = parse_sse(stream(client, project.id, chat.id, "Hi").text)

        errors = [d for n, d in events if n == "error"]
        assert errors == [{"message": "Run ended with status: failed"}]
        assert events[-1][0] == "done"
        roles = [m.role for m in chat_store.list_messages(db_session, chat.id)]
        assert roles == [MessageRole.USER]

    def test_empty_message_rejected(self, client, project, chat):
        response = stream(client, project.id, chat.id, "   ")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "empty_message"

    def test_unknown_chat(self, client, project):
        response = stream(client, project.id, uuid.uuid4(), "Hi")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "chat_not_found"

    def test_closed_chat_is_reopened(self, client, project, chat, db_session):
        chat.status = ChatStatus.CLOSED
        db_session.commit()

        stream(client, project.id, chat.id, "Back again")

        db_session.expire_all()
        assert db_session.get(Chat, chat.id).status == ChatStatus.OPEN


    def test_run_timeout_reported(self, client, project, chat, fake_openai, db_session):
        ticks = iter(range(0, 10000, 61))
        strategy = PollingRunStrategy(interval=0.8, timeout=120, sleep=no_sleep, clock=lambda: next(ticks))
        client.app.state.assistant_bridge = AssistantBridge(strategy, client_factory=lambda key: fake_openai)
        fake_openai.run_statuses = ["in_progress"]

        events = parse_sse(stream(client, project.id, chat.id, "Hi").text)

        assert [name for name, _ in events] == ["meta", "tool", "error", "done"]
        assert events[2][1] == {"message": "Run timeout (120s)"}
        assert ("runs.cancel", "run_1", "thread_test") in fake_openai.calls
        roles = [m.role for m in chat_store.list_messages(db_session, chat.id)]
        assert roles == [MessageRole.USER]


def drain_notifications(client):
    """Wait for owner notifications spawned by the relay."""
    client.portal.call(client.app.state.notification_tasks.drain)


@pytest.mark.integration
class TestStreamNotifications:

    def test_first_message_notifies_owner(self, client, project, chat, notifier):
        stream(client, project.id, chat.id, "Hello")
        stream(client, project.id, chat.id, "Still there?")
        drain_notifications(client)

        assert notifier.new_chats == [str(chat.id)]
        assert notifier.contacts == []

    def test_contacts_trigger_one_notification(self, client, project, chat, notifier):
        stream(client, project.id, chat.id, "my email is a@b.com")
        drain_notifications(client)

        assert notifier.contacts == [[{"type": "email", "value": "a@b.com"}]]

    def test_notification_failure_does_not_break_stream(self, client, project, chat, notifier):
        async def broken(project, chat):
            raise RuntimeError("telegram down")

        notifier.notify_new_chat = broken

        events = parse_sse(stream(client, project.id, chat.id, "Hello").text)
        drain_notifications(client)

        assert "".join(d["t"] for n, d in events if n == "token") == "Hello!"

    def test_hanging_notifier_does_not_delay_reply(self, client, project, chat, notifier):
        async def hang(project, chat):
            await asyncio.sleep(3600)

        notifier.notify_new_chat = hang

        started = time.monotonic()
        events = parse_sse(stream(client, project.id, chat.id, "my email is a@b.com").text)
        elapsed = time.monotonic() - started

        assert [name for name, _ in events] == ["meta", "tool", "token", "done"]
        assert elapsed < 5
        # still waiting on the owner notification; cancelled on shutdown
        assert len(client.app.state.notification_tasks) == 1
