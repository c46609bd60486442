"""
Test configuration and fixtures.

The API runs against in-memory SQLite; the OpenAI client and the Telegram
notifier are replaced with in-process fakes on ``app.state``.
"""
import os

# must be set before aiwidget.config is imported
os.environ.setdefault("RUN_MIGRATIONS", "false")
os.environ.setdefault("CHAT_SWEEP_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ADMIN_EMAIL", "seed-admin@example.com")

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aiwidget.db import Base, get_db
from aiwidget.models import User, Role, Project
from aiwidget.auth import get_password_hash
from aiwidget.services.assistant import AssistantBridge, PollingRunStrategy, StreamingRunStrategy
from aiwidget.services import chat_store
from aiwidget.services.relay import ChatRunGuard, NotificationTasks

# Test database URL (in-memory SQLite)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

# Create test engine
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ============= Fake OpenAI client =============
def _text_message(role, text, run_id=None):
    return SimpleNamespace(
        role=role,
        run_id=run_id,
        content=[SimpleNamespace(type="text", text=SimpleNamespace(value=text))],
    )


def _delta_event(text):
    delta = SimpleNamespace(content=[SimpleNamespace(type="text", text=SimpleNamespace(value=text))])
    return SimpleNamespace(event="thread.message.delta", data=SimpleNamespace(delta=delta))


class FakeStream:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._events()

    async def _events(self):
        for event in self.client.stream_events:
            if isinstance(event, Exception):
                raise event
            yield event

    async def get_final_messages(self):
        return list(self.client.final_messages)


class FakeRuns:
    def __init__(self, client):
        self.client = client
        self._polls = 0

    async def create(self, thread_id, assistant_id, additional_instructions=None):
        self.client.calls.append(("runs.create", thread_id, assistant_id, additional_instructions))
        self.client.raise_if_scripted("runs.create")
        return SimpleNamespace(id="run_1", status="queued")

    async def retrieve(self, run_id, thread_id):
        statuses = self.client.run_statuses
        status = statuses[min(self._polls, len(statuses) - 1)]
        self._polls += 1
        if status == "completed" and self.client.reply is not None:
            self.client.thread_messages.insert(0, _text_message("assistant", self.client.reply, run_id))
        return SimpleNamespace(id=run_id, status=status, last_error=None)

    async def cancel(self, run_id, thread_id):
        self.client.calls.append(("runs.cancel", run_id, thread_id))

    def stream(self, thread_id, assistant_id, additional_instructions=None):
        self.client.calls.append(("runs.stream", thread_id, assistant_id, additional_instructions))
        return FakeStream(self.client)


class FakeMessages:
    def __init__(self, client):
        self.client = client

    async def create(self, thread_id, role, content):
        self.client.calls.append(("messages.create", thread_id, role, content))
        self.client.raise_if_scripted("messages.create")
        self.client.thread_messages.insert(0, _text_message(role, content))

    async def list(self, thread_id, limit=20, order="desc"):
        return SimpleNamespace(data=list(self.client.thread_messages[:limit]))


class FakeThreads:
    def __init__(self, client):
        self.client = client
        self.messages = FakeMessages(client)
        self.runs = FakeRuns(client)

    async def create(self):
        self.client.calls.append(("threads.create",))
        self.client.raise_if_scripted("threads.create")
        return SimpleNamespace(id="thread_test")


class FakeAssistants:
    def __init__(self, client):
        self.client = client
        self.instructions = "Be helpful."

    async def retrieve(self, assistant_id):
        self.client.raise_if_scripted("assistants.retrieve")
        return SimpleNamespace(id=assistant_id, name="Helper", model="gpt-4o", instructions=self.instructions)

    async def update(self, assistant_id, instructions):
        self.client.raise_if_scripted("assistants.update")
        self.instructions = instructions
        return SimpleNamespace(id=assistant_id, name="Helper", model="gpt-4o", instructions=instructions)


class FakeOpenAI:
    """Scriptable stand-in for ``openai.AsyncOpenAI`` covering the Assistants calls we make."""

    def __init__(self):
        self.calls = []
        self.errors = {}
        self.thread_messages = []
        self.reply = "Hello!"
        self.run_statuses = ["in_progress", "completed"]
        self.stream_events = []
        self.final_messages = []
        self.closed = 0
        self.beta = SimpleNamespace(threads=FakeThreads(self), assistants=FakeAssistants(self))

    def raise_if_scripted(self, name):
        error = self.errors.get(name)
        if isinstance(error, list):
            # one scripted failure per call, then success
            error = error.pop(0) if error else None
        if error is not None:
            raise error

    def script_stream(self, *deltas, final_text=None):
        self.stream_events = [_delta_event(d) for d in deltas]
        text = "".join(deltas) if final_text is None else final_text
        self.final_messages = [_text_message("assistant", text, "run_1")]

    async def close(self):
        self.closed += 1


async def no_sleep(seconds):
    return None


class RecordingNotifier:
    def __init__(self):
        self.new_chats = []
        self.contacts = []

    async def notify_new_chat(self, project, chat):
        self.new_chats.append(str(chat.id))
        return True

    async def notify_contacts(self, project, chat, contacts):
        self.contacts.append([c.to_dict() for c in contacts])
        return True


# ============= Fixtures =============
@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def poll_bridge(fake_openai):
    strategy = PollingRunStrategy(interval=0.8, timeout=120, sleep=no_sleep)
    return AssistantBridge(strategy, client_factory=lambda key: fake_openai)


@pytest.fixture
def stream_bridge(fake_openai):
    return AssistantBridge(StreamingRunStrategy(), client_factory=lambda key: fake_openai)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(db_session, poll_bridge, notifier):
    """Create a test client with database session and collaborator overrides."""
    from fastapi.testclient import TestClient
    from aiwidget.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    saved = {
        key: getattr(app.state, key)
        for key in ("session_factory", "assistant_bridge", "notifier", "run_guard", "notification_tasks")
    }
    app.state.session_factory = TestingSessionLocal
    app.state.assistant_bridge = poll_bridge
    app.state.notifier = notifier
    app.state.run_guard = ChatRunGuard()
    app.state.notification_tasks = NotificationTasks()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    for key, value in saved.items():
        setattr(app.state, key, value)


def _create_user(db_session, email, password, role):
    user = User(email=email, password_hash=get_password_hash(password), role=role)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    """Create an admin user for testing."""
    return _create_user(db_session, "admin@test.com", "admin12345", Role.ADMIN)


@pytest.fixture
def regular_user(db_session):
    return _create_user(db_session, "owner@test.com", "owner12345", Role.USER)


@pytest.fixture
def other_user(db_session):
    return _create_user(db_session, "other@test.com", "other12345", Role.USER)


def _login(client, email, password):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(client, admin_user):
    """Get authentication headers for admin user."""
    return _login(client, "admin@test.com", "admin12345")


@pytest.fixture
def user_auth_headers(client, regular_user):
    return _login(client, "owner@test.com", "owner12345")


@pytest.fixture
def other_auth_headers(client, other_user):
    return _login(client, "other@test.com", "other12345")


@pytest.fixture
def project(db_session, regular_user):
    """A project owned by ``regular_user`` that can run the assistant."""
    project = Project(
        name="Acme Support",
        assistant_id="asst_abc123",
        provider_credential="sk-test-1234",
        instructions="Answer briefly.",
        allowed_origins=["https://acme.example", "shop.example"],
        owner_id=regular_user.id,
    )
    db_session.add(project)
    db_session.commit()
    db_session.refresh(project)
    return project


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database (tables created by ``db_session``)."""
    return TestingSessionLocal


@pytest.fixture
def chat(db_session, project):
    """An open assistant-mode chat on ``project``."""
    return chat_store.create_chat(db_session, project.id, "thread_test", visitor_id="visitor-1")
