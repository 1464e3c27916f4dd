from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fieldops.utils import utcnow


class InputKind(str, Enum):
    VOICE = "voice"
    TEXT = "text"
    UI = "ui"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ResponseKind(str, Enum):
    TEXT = "text"
    VOICE = "voice"
    ACTION = "action"
    NAVIGATION = "navigation"


class InputEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    user_id: str
    input_kind: InputKind = InputKind.TEXT
    content: str
    metadata: dict[str, Any] | None = None


class ConversationEntry(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class ActionLogEntry(BaseModel):
    type: str
    details: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class NormalizedResponse(BaseModel):
    tenant_id: str
    user_id: str
    response_kind: ResponseKind = ResponseKind.TEXT
    content: str
    metadata: dict[str, Any] | None = None


class InputAccepted(BaseModel):
    status: str = "accepted"
    tenant_id: str
    user_id: str
