from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from uuid import UUID
import logging

from aiwidget.db import get_db
from aiwidget.deps import get_current_user, get_assistant_bridge
from aiwidget.exceptions import NotFoundError, ValidationError
from aiwidget.models import Chat, ChatMode, MessageRole, User
from aiwidget.rbac import can_access_project
from aiwidget.schemas import ChatModeResponse, MessageList, MessageResponse, OperatorMessage
from aiwidget.services import chat_store
from aiwidget.services.assistant import AssistantBridge, ProviderError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/chats", tags=["chats"])


def get_chat_for_user(db: Session, chat_id: UUID, user: User) -> Chat:
    """Chat visible to ``user``; chats of other tenants are reported as missing."""
    chat = chat_store.get_chat(db, chat_id)
    if chat is None or not can_access_project(user, chat.project):
        raise NotFoundError("Chat", str(chat_id))
    return chat


@router.get("/{chat_id}/messages", response_model=MessageList)
def list_messages(
    chat_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    chat = get_chat_for_user(db, chat_id, current_user)
    return {"items": chat_store.list_messages(db, chat.id)}


@router.post("/{chat_id}/takeover", response_model=ChatModeResponse)
def takeover(
    chat_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Switch the chat to a human operator; the assistant stops answering"""
    chat = get_chat_for_user(db, chat_id, current_user)
    chat = chat_store.set_chat_mode(db, chat, ChatMode.HUMAN)
    return ChatModeResponse(mode=chat.mode)


@router.post("/{chat_id}/release", response_model=ChatModeResponse)
def release(
    chat_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Hand the chat back to the assistant"""
    chat = get_chat_for_user(db, chat_id, current_user)
    chat = chat_store.set_chat_mode(db, chat, ChatMode.ASSISTANT)
    return ChatModeResponse(mode=chat.mode)


@router.post("/{chat_id}/message", response_model=MessageResponse)
async def post_operator_message(
    chat_id: UUID,
    data: OperatorMessage,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
):
    """
    Store an operator reply and copy it into the provider thread.

    The copy keeps the assistant's context complete once the chat is
    released. A failed copy is logged; the stored message stands.
    """
    text = data.text.strip()
    if not text:
        raise ValidationError("Message must not be empty", error_code="empty_message")

    chat = await run_in_threadpool(get_chat_for_user, db, chat_id, current_user)
    credential = chat.project.provider_credential
    thread_ref = chat.thread_ref
    message = await run_in_threadpool(chat_store.append_message, db, chat.id, MessageRole.HUMAN, text)
    response = MessageResponse.model_validate(message)

    try:
        await bridge.inject_operator_turn(credential, thread_ref, text)
    except ProviderError as exc:
        logger.warning(
            f"Operator message not synced to thread: {exc.message}",
            extra={"event": "operator_sync_failed", "chat_id": str(chat_id), "error_code": exc.error_code},
        )
    return response


@router.delete("/{chat_id}")
def delete_chat(
    chat_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    chat = get_chat_for_user(db, chat_id, current_user)
    chat_store.delete_chat(db, chat)
    return {"ok": True}
