"""Data models for the webhook forwarding proxy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TIMEOUT_ERROR_PREFIX = "timeout"


@dataclass
class ChatWebhookPayload:
    """Body relayed for one chat message, both to the proxy and to the webhook."""

    chat_id: str
    message: str
    user_id: str

    def to_json(self) -> dict[str, str]:
        return {"chatId": self.chat_id, "message": self.message, "userId": self.user_id}

    @classmethod
    def missing_fields(cls, body: dict[str, Any]) -> list[str]:
        return [
            key for key in ("chatId", "message", "userId")
            if not isinstance(body.get(key), str) or not body[key]
        ]

    @classmethod
    def from_json(cls, body: dict[str, Any]) -> ChatWebhookPayload:
        return cls(chat_id=body["chatId"], message=body["message"], user_id=body["userId"])


@dataclass
class ProxyReply:
    """Business-level outcome of a proxied webhook call."""

    success: bool
    response: Any = None
    error: str | None = None
    status: int | None = None

    @property
    def timed_out(self) -> bool:
        return not self.success and (self.error or "").lower().startswith(TIMEOUT_ERROR_PREFIX)

    def to_json(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "response": self.response}
        data: dict[str, Any] = {"success": False, "error": self.error or "unknown error"}
        if self.status is not None:
            data["status"] = self.status
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ProxyReply:
        return cls(
            success=bool(data.get("success")),
            response=data.get("response"),
            error=data.get("error"),
            status=data.get("status"),
        )


@dataclass
class RelayReply:
    """Outcome of the generic webhook relay used by form submissions."""

    success: bool
    status: int
    status_text: str
    response: str

    def to_json(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "statusText": self.status_text,
            "response": self.response,
        }
