"""Chat session: the owned lifetime of a user's message log and webhook cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.chat.log import MessageLog
from src.chat.notifications import NotificationCenter
from src.chat.pipeline import (
    WEBHOOK_TIMEOUT_SECONDS,
    MessagePipeline,
    PipelineResult,
    TypingIndicator,
)
from src.models import Author, ChatRecord, Message
from src.webhook.cache import WebhookResolver

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.chat.pipeline import Forwarder
    from src.store.feed import ChangeFeed
    from src.webhook.cache import WebhookSource

logger = logging.getLogger(__name__)


class SessionClosedError(Exception):
    pass


class ChatSession:
    """Wires log, resolver, notifier and pipeline for one authenticated user.

    The change-feed subscription opens at construction and is torn down
    exactly once by ``close``.
    """

    def __init__(
        self,
        user: Author,
        source: WebhookSource,
        proxy: Forwarder,
        feed: ChangeFeed | None = None,
        audit_logger: AuditLogger | None = None,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
    ) -> None:
        self.user = user
        self.log = MessageLog()
        self.notifications = NotificationCenter()
        self.typing = TypingIndicator()
        self.resolver = WebhookResolver(source, feed=feed, audit_logger=audit_logger)
        self.pipeline = MessagePipeline(
            log=self.log,
            resolver=self.resolver,
            proxy=proxy,
            notifier=self.notifications,
            typing=self.typing,
            timeout=timeout,
        )
        self._closed = False
        self.resolver.start()
        logger.info("Chat session opened for user %s", user.id)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, chat_id: str, text: str) -> PipelineResult:
        if self._closed:
            raise SessionClosedError("Chat session is closed")
        return await self.pipeline.send(chat_id, text, self.user)

    def messages(self, chat_id: str) -> tuple[Message, ...]:
        return self.log.get(chat_id)

    def register_chat(self, chat: ChatRecord) -> None:
        """Pre-seed the webhook cache after creating or editing a chat."""
        self.resolver.set(chat.id, chat.webhook_url)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.resolver.close()
        self.resolver.clear()
        self.log.clear()
        logger.info("Chat session closed for user %s", self.user.id)

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
