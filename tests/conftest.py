"""Shared test fixtures for chatrelay."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.models import (
    AuditEvent,
    AuditEventType,
    Author,
    FieldType,
    FormDefinition,
    FormField,
    Message,
    RiskLevel,
)
from src.store.db import ChatDB
from src.webhook.models import ChatWebhookPayload, ProxyReply

TOKEN = "test-admin-token-12345"
WEBHOOK_URL = "https://hooks.example.com/chat"
STORAGE_LINK = "https://drive.google.com/file/d/ABC123/view"


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def db() -> Iterator[ChatDB]:
    """In-memory ChatDB with its own change feed."""
    store = ChatDB(":memory:")
    yield store
    store.close()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "chatrelay.db")


# --- Factory functions for test data ---


def make_author(**kwargs: Any) -> Author:
    defaults: dict[str, Any] = {"id": "user-1", "name": "Alice"}
    defaults.update(kwargs)
    return Author(**defaults)


def make_message(chat_id: str = "chat-1", content: Any = "hello", **kwargs: Any) -> Message:
    """Factory for Message with sensible defaults."""
    author = kwargs.pop("author", None) or make_author()
    message = Message.create(chat_id, content, author)
    return message.model_copy(update=kwargs) if kwargs else message


def make_audit_event(**kwargs: Any) -> AuditEvent:
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.WEBHOOK_RELAY,
        "action": "forward_chat",
        "result": "success",
        "risk_level": RiskLevel.INFO,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


def make_payload(**kwargs: Any) -> ChatWebhookPayload:
    defaults: dict[str, Any] = {"chat_id": "chat-1", "message": "hello", "user_id": "user-1"}
    defaults.update(kwargs)
    return ChatWebhookPayload(**defaults)


def make_reply(response: Any = None, **kwargs: Any) -> ProxyReply:
    defaults: dict[str, Any] = {"success": True, "response": response}
    defaults.update(kwargs)
    return ProxyReply(**defaults)


def make_form(**kwargs: Any) -> FormDefinition:
    """Factory for a published contact form with name, email and age fields."""
    defaults: dict[str, Any] = {
        "id": "form-1",
        "title": "Contact",
        "is_published": True,
        "fields": [
            FormField(id="name", label="Name", is_required=True, field_order=0),
            FormField(id="email", label="Email", field_type=FieldType.EMAIL, field_order=1),
            FormField(id="age", label="Age", field_type=FieldType.NUMBER, field_order=2),
        ],
    }
    defaults.update(kwargs)
    return FormDefinition(**defaults)
