"""
Conversation store: chats and their append-only message log.

All functions take an explicit SQLAlchemy session and commit their own writes.
Async callers (the stream relay) run them through the threadpool.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aiwidget.models import Chat, ChatMode, ChatStatus, Message, MessageRole

logger = logging.getLogger(__name__)

CHAT_LIST_LIMIT = 200
# smallest step used to keep message timestamps strictly increasing per chat
TIMESTAMP_STEP = timedelta(microseconds=1)


def create_chat(db: Session, project_id: UUID, thread_ref: str, visitor_id: Optional[str] = None) -> Chat:
    """Create a chat bound to an already provisioned provider thread."""
    now = datetime.utcnow()
    chat = Chat(
        project_id=project_id,
        thread_ref=thread_ref,
        mode=ChatMode.ASSISTANT,
        status=ChatStatus.OPEN,
        visitor_id=visitor_id,
        created_at=now,
        updated_at=now,
        last_seen_at=now,
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    logger.info(
        f"Chat created: {chat.id}",
        extra={"event": "chat_created", "project_id": str(project_id), "chat_id": str(chat.id)},
    )
    return chat


def get_chat(db: Session, chat_id: UUID) -> Optional[Chat]:
    return db.query(Chat).filter(Chat.id == chat_id).first()


def get_chat_for_project(db: Session, project_id: UUID, chat_id: UUID) -> Optional[Chat]:
    """Chat lookup scoped to a project; a chat of another project is reported as missing."""
    return db.query(Chat).filter(Chat.id == chat_id, Chat.project_id == project_id).first()


def list_chats(
    db: Session,
    project_id: UUID,
    status: Optional[ChatStatus] = None,
    mode: Optional[ChatMode] = None,
    limit: int = CHAT_LIST_LIMIT,
) -> List[Chat]:
    """Chats of a project, most recently active first."""
    query = db.query(Chat).filter(Chat.project_id == project_id)
    if status:
        query = query.filter(Chat.status == status)
    if mode:
        query = query.filter(Chat.mode == mode)
    return query.order_by(Chat.updated_at.desc()).limit(min(limit, CHAT_LIST_LIMIT)).all()


def list_messages(db: Session, chat_id: UUID) -> List[Message]:
    """Messages of a chat in insertion order."""
    return (
        db.query(Message)
        .filter(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc())
        .all()
    )


def append_message(db: Session, chat_id: UUID, role: MessageRole, content: str) -> Message:
    """
    Append one message to the chat log.

    The stored timestamp is bumped past the chat's latest message when the
    clock would tie or go backwards, so ordering by created_at always matches
    insertion order.
    """
    now = datetime.utcnow()
    latest = db.query(func.max(Message.created_at)).filter(Message.chat_id == chat_id).scalar()
    if latest is not None and now <= latest:
        now = latest + TIMESTAMP_STEP

    message = Message(chat_id=chat_id, role=role, content=content, created_at=now)
    db.add(message)

    chat = get_chat(db, chat_id)
    if chat is not None and chat.updated_at < now:
        chat.updated_at = now

    db.commit()
    db.refresh(message)
    return message


def set_chat_mode(db: Session, chat: Chat, mode: ChatMode) -> Chat:
    """Switch who answers the chat. Setting the current mode again is a no-op."""
    if chat.mode == mode:
        return chat
    previous = chat.mode
    chat.mode = mode
    chat.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(chat)
    logger.info(
        f"Chat {chat.id} mode {previous.value} -> {mode.value}",
        extra={"event": "chat_mode_changed", "chat_id": str(chat.id), "project_id": str(chat.project_id)},
    )
    return chat


def touch_chat(db: Session, chat: Chat) -> Chat:
    """Mark visitor activity; a closed chat is reopened."""
    now = datetime.utcnow()
    chat.last_seen_at = now
    if chat.updated_at < now:
        chat.updated_at = now
    if chat.status == ChatStatus.CLOSED:
        chat.status = ChatStatus.OPEN
        logger.info(f"Chat {chat.id} reopened", extra={"event": "chat_reopened", "chat_id": str(chat.id)})
    db.commit()
    db.refresh(chat)
    return chat


def count_user_messages(db: Session, chat_id: UUID) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(Message.chat_id == chat_id, Message.role == MessageRole.USER)
        .scalar()
    )


def is_first_user_message(db: Session, chat_id: UUID) -> bool:
    """True when exactly one visitor message has been stored for the chat."""
    return count_user_messages(db, chat_id) == 1


def delete_chat(db: Session, chat: Chat) -> None:
    chat_id = chat.id
    db.delete(chat)
    db.commit()
    logger.info(f"Chat deleted: {chat_id}", extra={"event": "chat_deleted", "chat_id": str(chat_id)})


def close_inactive_chats(db: Session, inactivity: timedelta, now: Optional[datetime] = None) -> int:
    """Close open chats with no visitor activity for longer than ``inactivity``."""
    cutoff = (now or datetime.utcnow()) - inactivity
    stale = (
        db.query(Chat)
        .filter(Chat.status == ChatStatus.OPEN, Chat.last_seen_at < cutoff)
        .all()
    )
    for chat in stale:
        chat.status = ChatStatus.CLOSED
    if stale:
        db.commit()
        logger.info(f"Closed {len(stale)} inactive chats", extra={"event": "chats_closed"})
    return len(stale)
