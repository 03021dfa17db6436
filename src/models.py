"""Shared Pydantic data models for chatrelay."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SYSTEM_AUTHOR_ID = "system"

# --- Enums ---


class AuditEventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    WEBHOOK_RELAY = "webhook_relay"
    WEBHOOK_TIMEOUT = "webhook_timeout"
    WEBHOOK_RESOLUTION_FAILURE = "webhook_resolution_failure"
    FORM_SUBMISSION = "form_submission"
    ADMIN_CHANGE = "admin_change"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    DATE = "date"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


def _now() -> datetime:
    return datetime.now(UTC)


def _now_iso() -> str:
    return _now().isoformat()


# --- Chat Models ---


class Author(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    avatar: str | None = None


SYSTEM_AUTHOR = Author(id=SYSTEM_AUTHOR_ID, name="AI Assistant")


class Message(BaseModel):
    """One chat utterance. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    content: str | dict[str, Any] | list[Any]
    author_id: str
    author_name: str | None = None
    author_avatar: str | None = None
    chat_id: str

    @classmethod
    def create(
        cls,
        chat_id: str,
        content: str | dict[str, Any] | list[Any],
        author: Author,
    ) -> Message:
        return cls(
            id=uuid.uuid4().hex,
            created_at=_now(),
            content=content,
            author_id=author.id,
            author_name=author.name,
            author_avatar=author.avatar,
            chat_id=chat_id,
        )

    @property
    def is_bot(self) -> bool:
        return self.author_id == SYSTEM_AUTHOR_ID


class ChatRecord(BaseModel):
    id: str
    name: str
    description: str = ""
    webhook_url: str | None = None
    created_at: str = Field(default_factory=_now_iso)


# --- Form Models ---


class FormField(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    field_type: FieldType = FieldType.TEXT
    label: str
    placeholder: str | None = None
    help_text: str | None = None
    is_required: bool = False
    field_order: int = 0
    options: list[str] | None = None
    default_value: Any = None


class FormDefinition(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    description: str = ""
    webhook_url: str | None = None
    is_published: bool = False
    created_at: str = Field(default_factory=_now_iso)
    fields: list[FormField] = Field(default_factory=list)

    def sorted_fields(self) -> list[FormField]:
        return sorted(self.fields, key=lambda f: f.field_order)


class FormResponse(BaseModel):
    id: str
    form_id: str
    user_email: str
    submitted_at: str
    values: dict[str, Any] = Field(default_factory=dict)


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    user_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked" | "timeout"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
