"""
Streaming relay.

Turns one visitor message into a sequence of server-sent events:

    INIT -> VALIDATING -> PERSISTING -> MODE_CHECK -> HUMAN_WAIT | ASSISTANT_RUN -> CLOSED

``validate`` runs before the response starts and raises like any other
request handler. Once ``events`` is iterated every path ends with exactly one
``done`` event; failures after that point are reported as ``error`` events.
"""
import asyncio
import enum
import json
import logging
import re
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine, Dict, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from aiwidget.db import SessionFactory
from aiwidget.exceptions import NotFoundError, ValidationError
from aiwidget.models import Chat, ChatMode, MessageRole, Project
from aiwidget.services import chat_store
from aiwidget.services.assistant import AssistantBridge, RunCompleted, RunFailed, TextDelta, ToolEvent
from aiwidget.services.contacts import extract_contacts
from aiwidget.services.notifications import TelegramNotifier
from aiwidget.services.project_service import get_project
from aiwidget.services.sanitizer import CitationSanitizer, strip_markers

logger = logging.getLogger(__name__)

ASSISTANT_ID_RE = re.compile(r"^asst_\w+$")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


class RelayState(str, enum.Enum):
    INIT = "init"
    VALIDATING = "validating"
    PERSISTING = "persisting"
    MODE_CHECK = "mode_check"
    HUMAN_WAIT = "human_wait"
    ASSISTANT_RUN = "assistant_run"
    CLOSED = "closed"


@dataclass(frozen=True)
class RelayEvent:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data, ensure_ascii=False, default=str)}\n\n"

    @classmethod
    def error(cls, message: str) -> "RelayEvent":
        return cls("error", {"message": message})


class ChatRunGuard:
    """
    Per-chat single-flight lock.

    Two messages sent to the same chat are relayed one after the other so
    their runs never overlap on the provider thread. Locks are dropped once
    nobody holds or waits for them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, chat_id):
        key = str(chat_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def is_busy(self, chat_id) -> bool:
        return str(chat_id) in self._locks

    def __len__(self) -> int:
        return len(self._locks)


class NotificationTasks:
    """
    Owner notifications running beside the relay.

    Tasks are referenced here until they finish so the event loop does not
    drop them; a failure is logged and never reaches the visitor.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], log_extra: Optional[Dict[str, Any]] = None) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._finished(done, log_extra or {}))
        return task

    def _finished(self, task: asyncio.Task, log_extra: Dict[str, Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                f"Notification task failed: {exc}",
                extra={**log_extra, "event": "notification_failed"},
            )

    async def drain(self) -> None:
        """Wait for every pending notification."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending notifications; used on shutdown."""
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)


def compose_instructions(project_instructions: Optional[str], directive: str) -> str:
    parts = [(project_instructions or "").strip(), (directive or "").strip()]
    return "\n\n".join(part for part in parts if part)


def assistant_precondition_error(project: Project) -> Optional[str]:
    """Describe why ``project`` cannot run the assistant, or None when it can."""
    assistant_id = (project.assistant_id or "").strip()
    if not assistant_id:
        return "assistant_id is empty for this project"
    if not ASSISTANT_ID_RE.match(assistant_id):
        return "assistant_id is malformed for this project"
    if not project.provider_credential:
        return "openai_api_key is empty for this project"
    return None


class StreamRelay:
    def __init__(
        self,
        session_factory: SessionFactory,
        bridge: AssistantBridge,
        notifier: TelegramNotifier,
        guard: ChatRunGuard,
        project_id: Optional[UUID],
        chat_id: Optional[UUID],
        message: str,
        citation_directive: str = "",
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        notification_tasks: Optional[NotificationTasks] = None,
    ):
        self._session_factory = session_factory
        self.bridge = bridge
        self.notifier = notifier
        self.guard = guard
        self.notification_tasks = notification_tasks if notification_tasks is not None else NotificationTasks()
        self.project_id = project_id
        self.chat_id = chat_id
        self.message = (message or "").strip()
        self.citation_directive = citation_directive
        self._is_disconnected = is_disconnected
        self.state = RelayState.INIT
        self._log_extra = {"project_id": str(project_id), "chat_id": str(chat_id)}

    async def validate(self) -> None:
        """Checks that must fail as a plain HTTP error, before any event is sent."""
        self.state = RelayState.VALIDATING
        if not self.message:
            raise ValidationError("Message must not be empty", error_code="empty_message")

        def lookup() -> bool:
            db = self._session_factory()
            try:
                return chat_store.get_chat_for_project(db, self.project_id, self.chat_id) is not None
            finally:
                db.close()

        if self.project_id is None or self.chat_id is None or not await run_in_threadpool(lookup):
            raise NotFoundError("Chat", str(self.chat_id))

    async def events(self) -> AsyncIterator[RelayEvent]:
        """Relay events; the last one is always ``done`` unless the client went away."""
        db = self._session_factory()
        try:
            async with aclosing(self._flow(db)) as flow:
                async for event in flow:
                    yield event
                    if await self._client_gone():
                        logger.info("Client disconnected, abandoning relay", extra=self._log_extra)
                        return
        except Exception as exc:
            logger.error(f"Relay failed: {exc}", exc_info=True, extra={**self._log_extra, "event": "relay_failed"})
            yield RelayEvent.error("internal_error")
        finally:
            self.state = RelayState.CLOSED
            db.close()
        yield RelayEvent("done", {"chatId": str(self.chat_id)})

    async def sse(self) -> AsyncIterator[str]:
        async for event in self.events():
            yield event.to_sse()

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    async def _flow(self, db: Session) -> AsyncIterator[RelayEvent]:
        self.state = RelayState.PERSISTING
        async with self.guard.hold(self.chat_id):
            project, chat, first_message = await run_in_threadpool(self._persist_inbound, db)
            if project is None:
                yield RelayEvent.error("project_not_found")
                return

            self._side_effects(project, chat, first_message)

            self.state = RelayState.MODE_CHECK
            if chat.mode == ChatMode.HUMAN:
                self.state = RelayState.HUMAN_WAIT
                yield RelayEvent("waiting_for_human", {"chatId": str(self.chat_id)})
                return

            problem = assistant_precondition_error(project)
            if problem:
                logger.warning(problem, extra={**self._log_extra, "event": "assistant_unavailable"})
                yield RelayEvent.error(problem)
                return

            self.state = RelayState.ASSISTANT_RUN
            yield RelayEvent("meta", {"chatId": str(self.chat_id), "mode": ChatMode.ASSISTANT.value})
            async with aclosing(self._assistant_run(db, project, chat)) as run:
                async for event in run:
                    yield event

    def _persist_inbound(self, db: Session) -> Tuple[Optional[Project], Optional[Chat], bool]:
        project = get_project(db, self.project_id)
        if project is None:
            return None, None, False
        chat = chat_store.get_chat_for_project(db, self.project_id, self.chat_id)
        if chat is None:
            raise NotFoundError("Chat", str(self.chat_id))
        chat_store.touch_chat(db, chat)
        chat_store.append_message(db, chat.id, MessageRole.USER, self.message)
        first_message = chat_store.is_first_user_message(db, chat.id)
        # load everything the async side reads so no lazy SQL runs on the event loop
        db.refresh(project)
        db.refresh(chat)
        # detached instances stay readable after later commits and from notification tasks
        db.expunge(project)
        db.expunge(chat)
        return project, chat, first_message

    def _side_effects(self, project: Project, chat: Chat, first_message: bool) -> None:
        contacts = extract_contacts(self.message)
        if contacts:
            logger.info(
                f"Visitor left {len(contacts)} contact(s)",
                extra={**self._log_extra, "event": "contacts_found"},
            )
        if first_message or contacts:
            self.notification_tasks.spawn(
                self._notify_owner(project, chat, first_message, contacts),
                log_extra=self._log_extra,
            )

    async def _notify_owner(self, project: Project, chat: Chat, first_message: bool, contacts) -> None:
        try:
            if first_message:
                await self.notifier.notify_new_chat(project, chat)
            if contacts:
                await self.notifier.notify_contacts(project, chat, contacts)
        except Exception as exc:
            logger.warning(f"Notification side effect failed: {exc}", extra=self._log_extra)

    async def _assistant_run(self, db: Session, project: Project, chat: Chat) -> AsyncIterator[RelayEvent]:
        sanitizer = CitationSanitizer()
        events = self.bridge.run_turn(
            project.provider_credential,
            chat.thread_ref,
            project.assistant_id.strip(),
            self.message,
            compose_instructions(project.instructions, self.citation_directive),
        )
        async with aclosing(events):
            async for event in events:
                if isinstance(event, TextDelta):
                    piece = sanitizer.feed(event.text)
                    if piece:
                        yield RelayEvent("token", {"t": piece})
                elif isinstance(event, ToolEvent):
                    yield RelayEvent("tool", dict(event.info))
                elif isinstance(event, RunCompleted):
                    residual = sanitizer.finish(event.full_text)
                    if residual:
                        yield RelayEvent("token", {"t": residual})
                    final_text = strip_markers(event.full_text)
                    if final_text.strip():
                        await run_in_threadpool(
                            chat_store.append_message, db, self.chat_id, MessageRole.ASSISTANT, final_text
                        )
                    logger.info("Assistant run completed", extra={**self._log_extra, "event": "run_completed"})
                elif isinstance(event, RunFailed):
                    logger.warning(
                        f"Assistant run failed: {event.message}",
                        extra={**self._log_extra, "event": "run_failed", "error_code": event.error.error_code},
                    )
                    yield RelayEvent.error(event.message)
