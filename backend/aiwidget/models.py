import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum, Text, JSON, Uuid, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from aiwidget.db import Base
from aiwidget.utils.chat_names import chat_display_name


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Role(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class ChatMode(str, enum.Enum):
    ASSISTANT = "assistant"
    HUMAN = "human"


class ChatStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    HUMAN = "human"


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONList = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role, name="role", values_callable=_enum_values), nullable=False, default=Role.USER)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    projects = relationship("Project", back_populates="owner")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, default="New Project")
    assistant_id = Column(String(255), nullable=False, default="")
    provider_credential = Column(Text, nullable=False, default="")
    instructions = Column(Text, nullable=False, default="")
    allowed_origins = Column(JSONList, nullable=False, default=list)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Telegram notification binding
    notify_channel_id = Column(String(64), nullable=True)
    notify_connected_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    owner = relationship("User", back_populates="projects")
    chats = relationship("Chat", back_populates="project", cascade="all, delete-orphan")

    @property
    def has_provider_credential(self) -> bool:
        return bool(self.provider_credential)

    @property
    def provider_credential_hint(self):
        """Last four characters of the key, never the key itself."""
        if not self.provider_credential:
            return None
        return "..." + self.provider_credential[-4:]

    @property
    def telegram_connected(self) -> bool:
        return bool(self.notify_channel_id)


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    # Provider thread handle, set once at creation
    thread_ref = Column(String(255), nullable=False)
    mode = Column(Enum(ChatMode, name="chatmode", values_callable=_enum_values), nullable=False, default=ChatMode.ASSISTANT)
    status = Column(Enum(ChatStatus, name="chatstatus", values_callable=_enum_values), nullable=False, default=ChatStatus.OPEN)
    visitor_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    project = relationship("Project", back_populates="chats")
    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    @property
    def display_name(self) -> str:
        return chat_display_name(self.id)

    __table_args__ = (
        Index("ix_chats_project_updated", "project_id", "updated_at"),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_id = Column(Uuid(as_uuid=True), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    role = Column(Enum(MessageRole, name="messagerole", values_callable=_enum_values), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    chat = relationship("Chat", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
    )


class TelegramLinkToken(Base):
    __tablename__ = "telegram_link_tokens"

    secret = Column(String(32), primary_key=True)
    tg_chat_id = Column(String(64), nullable=False)
    username = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)
