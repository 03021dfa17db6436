"""Message pipeline: send a user message and collect the webhook reply.

States per outgoing message:

    COMPOSED -> APPENDED -> (AWAITING_WEBHOOK | NO_WEBHOOK_CONFIGURED)
             -> (COMPLETED | FAILED)

The user's message is appended before any I/O and is never rolled back.
Every webhook/network failure ends in FAILED plus a Notification; nothing
escapes ``send`` except task cancellation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import httpx

from src.chat.notifications import Notification
from src.chat.proxy_client import ProxyStatusError
from src.models import SYSTEM_AUTHOR, Author, Message
from src.webhook.cache import WebhookResolutionError
from src.webhook.models import ChatWebhookPayload, ProxyReply
from src.webhook.normalizer import normalize

if TYPE_CHECKING:
    from src.chat.log import MessageLog
    from src.chat.notifications import Notifier
    from src.webhook.cache import WebhookResolver

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 60.0


class PipelineState(str, Enum):
    COMPOSED = "composed"
    APPENDED = "appended"
    NO_WEBHOOK_CONFIGURED = "no_webhook_configured"
    AWAITING_WEBHOOK = "awaiting_webhook"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    WEBHOOK_ERROR = "webhook_error"
    PROXY_ERROR = "proxy_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class Forwarder(Protocol):
    async def forward(self, payload: ChatWebhookPayload) -> ProxyReply: ...


@dataclass
class PipelineResult:
    chat_id: str
    state: PipelineState = PipelineState.COMPOSED
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.COMPOSED])
    user_message: Message | None = None
    bot_message: Message | None = None
    failure: FailureReason | None = None
    detail: str | None = None

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)

    def fail(self, reason: FailureReason, detail: str | None = None) -> None:
        self.failure = reason
        self.detail = detail
        self.advance(PipelineState.FAILED)


class TypingIndicator:
    """Per-chat "awaiting response" flag, counted across concurrent sends."""

    def __init__(self) -> None:
        self._active: dict[str, int] = {}

    def is_active(self, chat_id: str) -> bool:
        return self._active.get(chat_id, 0) > 0

    @contextmanager
    def showing(self, chat_id: str) -> Iterator[None]:
        self._active = {**self._active, chat_id: self._active.get(chat_id, 0) + 1}
        try:
            yield
        finally:
            remaining = self._active.get(chat_id, 1) - 1
            if remaining > 0:
                self._active = {**self._active, chat_id: remaining}
            else:
                self._active = {k: v for k, v in self._active.items() if k != chat_id}


class MessagePipeline:
    """Orchestrates one outgoing message from log append to bot reply."""

    def __init__(
        self,
        log: MessageLog,
        resolver: WebhookResolver,
        proxy: Forwarder,
        notifier: Notifier,
        typing: TypingIndicator | None = None,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
    ) -> None:
        self._log = log
        self._resolver = resolver
        self._proxy = proxy
        self._notifier = notifier
        self.typing = typing or TypingIndicator()
        self._timeout = timeout

    async def send(self, chat_id: str, text: str, author: Author) -> PipelineResult:
        result = PipelineResult(chat_id=chat_id)
        if not text.strip():
            return result

        user_message = Message.create(chat_id, text, author)
        self._log.append(user_message)
        result.user_message = user_message
        result.advance(PipelineState.APPENDED)

        try:
            webhook_url = await self._resolver.resolve(chat_id)
        except WebhookResolutionError:
            self._notifier.notify(Notification.resolution_failed(chat_id))
            webhook_url = None

        if webhook_url is None:
            result.advance(PipelineState.NO_WEBHOOK_CONFIGURED)
            return result

        result.advance(PipelineState.AWAITING_WEBHOOK)
        payload = ChatWebhookPayload(chat_id=chat_id, message=text, user_id=author.id)
        with self.typing.showing(chat_id):
            reply = await self._call_proxy(payload, result)

        if reply is None:
            return result
        if not reply.success:
            self._handle_business_error(reply, result)
            return result

        normalized = normalize(reply.response)
        bot_author = SYSTEM_AUTHOR.model_copy(update={"avatar": normalized.avatar})
        bot_message = Message.create(chat_id, normalized.text, bot_author)
        self._log.append(bot_message)
        result.bot_message = bot_message
        result.advance(PipelineState.COMPLETED)
        return result

    async def _call_proxy(
        self, payload: ChatWebhookPayload, result: PipelineResult,
    ) -> ProxyReply | None:
        chat_id = payload.chat_id
        try:
            return await asyncio.wait_for(self._proxy.forward(payload), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Webhook reply for chat %s exceeded %ss", chat_id, self._timeout)
            self._notifier.notify(Notification.timeout(chat_id, self._timeout))
            result.fail(FailureReason.TIMEOUT, f"no reply within {self._timeout:g}s")
        except ProxyStatusError as exc:
            self._notifier.notify(Notification.proxy_error(chat_id, exc.status_code))
            result.fail(FailureReason.PROXY_ERROR, str(exc))
        except httpx.HTTPError as exc:
            logger.warning("Proxy transport error for chat %s: %s", chat_id, exc)
            self._notifier.notify(Notification.proxy_error(chat_id, None, str(exc)))
            result.fail(FailureReason.PROXY_ERROR, str(exc))
        except Exception:
            logger.exception("Unexpected error forwarding message for chat %s", chat_id)
            self._notifier.notify(Notification.unknown(chat_id))
            result.fail(FailureReason.UNKNOWN)
        return None

    def _handle_business_error(self, reply: ProxyReply, result: PipelineResult) -> None:
        chat_id = result.chat_id
        error = reply.error or "unknown error"
        if reply.timed_out:
            self._notifier.notify(Notification.timeout(chat_id, self._timeout))
            result.fail(FailureReason.TIMEOUT, error)
        else:
            self._notifier.notify(Notification.webhook_error(chat_id, error))
            result.fail(FailureReason.WEBHOOK_ERROR, error)
