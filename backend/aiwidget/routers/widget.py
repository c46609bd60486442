"""
Public widget API.

Called from the embeddable script on third-party pages. Origin checks happen
in WidgetOriginMiddleware before these handlers run.
"""
from typing import Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from aiwidget.config import settings
from aiwidget.db import SessionFactory, get_db, get_session_factory
from aiwidget.deps import get_assistant_bridge, get_notifier
from aiwidget.exceptions import NotFoundError, ValidationError
from aiwidget.rate_limit import limiter, WIDGET_RATE_LIMIT
from aiwidget.schemas import ChatStartRequest, ChatStartResponse, MessageList
from aiwidget.services import chat_store
from aiwidget.services.assistant import AssistantBridge
from aiwidget.services.notifications import TelegramNotifier
from aiwidget.services.project_service import get_project
from aiwidget.services.relay import SSE_HEADERS, StreamRelay

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/widget", tags=["widget"])


def parse_id(value: str) -> Optional[UUID]:
    try:
        return UUID(value)
    except ValueError:
        return None


@router.post("/{project_id}/chat/start", response_model=ChatStartResponse)
@limiter.limit(WIDGET_RATE_LIMIT)
async def start_chat(
    project_id: str,
    request: Request,
    payload: Optional[ChatStartRequest] = None,
    db: Session = Depends(get_db),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
):
    """Open a chat and its provider thread. No chat row exists if the thread cannot be created."""
    pid = parse_id(project_id)
    project = await run_in_threadpool(get_project, db, pid) if pid else None
    if project is None:
        raise NotFoundError("Project", project_id)
    if not project.provider_credential:
        raise ValidationError("Project has no OpenAI API key", error_code="openai_api_key_missing")

    thread_ref = await bridge.create_thread(project.provider_credential)
    visitor_id = payload.visitor_id if payload else None
    chat = await run_in_threadpool(chat_store.create_chat, db, pid, thread_ref, visitor_id)
    return ChatStartResponse(chat_id=chat.id, mode=chat.mode)


@router.get("/{project_id}/chat/{chat_id}/messages", response_model=MessageList)
def list_chat_messages(project_id: str, chat_id: str, db: Session = Depends(get_db)):
    pid, cid = parse_id(project_id), parse_id(chat_id)
    chat = chat_store.get_chat_for_project(db, pid, cid) if pid and cid else None
    if chat is None:
        raise NotFoundError("Chat", chat_id)
    return {"items": chat_store.list_messages(db, chat.id)}


@router.get("/{project_id}/chat/{chat_id}/stream")
@limiter.limit(WIDGET_RATE_LIMIT)
async def stream_chat(
    project_id: str,
    chat_id: str,
    request: Request,
    message: str = "",
    session_factory: SessionFactory = Depends(get_session_factory),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
    notifier: TelegramNotifier = Depends(get_notifier),
):
    """Relay one visitor message as a server-sent event stream."""
    relay = StreamRelay(
        session_factory=session_factory,
        bridge=bridge,
        notifier=notifier,
        guard=request.app.state.run_guard,
        project_id=parse_id(project_id),
        chat_id=parse_id(chat_id),
        message=message,
        citation_directive=settings.CITATION_DIRECTIVE,
        is_disconnected=request.is_disconnected,
        notification_tasks=request.app.state.notification_tasks,
    )
    await relay.validate()
    return StreamingResponse(relay.sse(), media_type="text/event-stream", headers=SSE_HEADERS)
