"""User-visible notifications raised by the message pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    WEBHOOK_ERROR = "webhook_error"
    PROXY_ERROR = "proxy_error"
    TIMEOUT = "timeout"
    UNKNOWN_ERROR = "unknown_error"
    RESOLUTION_FAILED = "resolution_failed"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    chat_id: str
    title: str
    description: str

    @classmethod
    def webhook_error(cls, chat_id: str, error: str) -> Notification:
        return cls(
            NotificationKind.WEBHOOK_ERROR, chat_id,
            "Webhook error",
            f"The webhook reported an error: {error}",
        )

    @classmethod
    def proxy_error(cls, chat_id: str, status: int | None, detail: str = "") -> Notification:
        if status is not None:
            description = f"The webhook proxy responded with HTTP {status}."
        else:
            description = f"Could not reach the webhook proxy: {detail}"
        return cls(NotificationKind.PROXY_ERROR, chat_id, "Proxy error", description)

    @classmethod
    def timeout(cls, chat_id: str, seconds: float) -> Notification:
        return cls(
            NotificationKind.TIMEOUT, chat_id,
            "Webhook timeout",
            f"The webhook did not answer within {seconds:g} seconds. "
            "Your message was sent.",
        )

    @classmethod
    def unknown(cls, chat_id: str) -> Notification:
        return cls(
            NotificationKind.UNKNOWN_ERROR, chat_id,
            "Unexpected error",
            "Something went wrong while waiting for the webhook reply.",
        )

    @classmethod
    def resolution_failed(cls, chat_id: str) -> Notification:
        return cls(
            NotificationKind.RESOLUTION_FAILED, chat_id,
            "Webhook unavailable",
            "The webhook configuration for this chat could not be loaded. "
            "Automatic replies are disabled for this session.",
        )


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class NotificationCenter:
    """Collects notifications for display and mirrors them to the log."""

    def __init__(self) -> None:
        self._items: tuple[Notification, ...] = ()

    @property
    def items(self) -> tuple[Notification, ...]:
        return self._items

    def notify(self, notification: Notification) -> None:
        logger.warning(
            "[%s] %s: %s",
            notification.chat_id, notification.title, notification.description,
        )
        self._items = (*self._items, notification)

    def drain(self) -> tuple[Notification, ...]:
        items, self._items = self._items, ()
        return items
