from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from typing import Optional, List, Dict
from datetime import datetime
from uuid import UUID
from aiwidget.models import Role, ChatMode, ChatStatus, MessageRole


def _clean_origins(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    cleaned = []
    for item in value:
        item = (item or "").strip()
        if item and item not in cleaned:
            cleaned.append(item)
    return cleaned


# ============= Auth Schemas =============
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role


class SessionUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str


class SessionResponse(BaseModel):
    ok: bool = True
    role: Role
    user: SessionUser


# ============= User Schemas =============
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100, description="Password (min 8 characters)")
    role: Role = Role.USER

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.strip().lower()


class PasswordUpdate(BaseModel):
    password: str = Field(..., min_length=8, max_length=100)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    role: Role
    created_at: datetime


# ============= Project Schemas =============
class ProjectCreate(BaseModel):
    name: str = Field("New Project", min_length=1, max_length=255)
    assistant_id: str = ""
    openai_api_key: str = ""
    instructions: str = ""
    allowed_origins: List[str] = Field(default_factory=list)
    owner_id: Optional[UUID] = None

    @field_validator("allowed_origins")
    @classmethod
    def clean_origins(cls, v):
        return _clean_origins(v)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    assistant_id: Optional[str] = None
    openai_api_key: Optional[str] = None
    instructions: Optional[str] = None
    allowed_origins: Optional[List[str]] = None
    owner_id: Optional[UUID] = None
    # one-time code issued by the notification bot
    telegram_secret: Optional[str] = None

    @field_validator("allowed_origins")
    @classmethod
    def clean_origins(cls, v):
        return _clean_origins(v)


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    assistant_id: str
    instructions: str
    allowed_origins: List[str]
    owner_id: Optional[UUID] = None
    has_provider_credential: bool
    provider_credential_hint: Optional[str] = None
    telegram_connected: bool
    notify_connected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class AssistantInstructionsUpdate(BaseModel):
    instructions: str


class AssistantConfigResponse(BaseModel):
    assistant_id: str
    name: Optional[str] = None
    model: Optional[str] = None
    instructions: str


# ============= Chat Schemas =============
class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    display_name: str
    mode: ChatMode
    status: ChatStatus
    visitor_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_seen_at: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    role: MessageRole
    content: str
    created_at: datetime


class MessageList(BaseModel):
    items: List[MessageResponse]


class OperatorMessage(BaseModel):
    text: str = Field(..., min_length=1)


class ChatModeResponse(BaseModel):
    ok: bool = True
    mode: ChatMode


# ============= Widget Schemas =============
class ChatStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    visitor_id: Optional[str] = Field(None, alias="visitorId", max_length=255)


class ChatStartResponse(BaseModel):
    chat_id: UUID = Field(..., serialization_alias="chatId")
    mode: ChatMode


# ============= Stats Schemas =============
class ProjectStats(BaseModel):
    project_id: UUID
    name: str
    chats_total: int
    chats_by_status: Dict[str, int]
    chats_by_mode: Dict[str, int]
    messages_by_role: Dict[str, int]
    last_activity_at: Optional[datetime] = None


class StatsOverview(BaseModel):
    projects_total: int
    chats_total: int
    messages_total: int
    projects: List[ProjectStats]
