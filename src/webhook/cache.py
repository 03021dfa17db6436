"""Webhook URL resolver with a session-scoped, tri-state cache.

Entries are one of:
- Unresolved: never queried (absent from the cache)
- NoWebhook: resolved, the chat has no webhook configured
- WebhookUrl: resolved to a concrete URL

The cache is kept coherent with the store through a single change-feed
subscription: UPDATE events overwrite an entry, DELETE events evict it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from src.models import AuditEvent, AuditEventType, RiskLevel
from src.store.db import CHATS_TABLE
from src.store.feed import ChangeEvent, ChangeKind

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.store.feed import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unresolved:
    pass


@dataclass(frozen=True)
class NoWebhook:
    pass


@dataclass(frozen=True)
class WebhookUrl:
    url: str


CacheEntry = Unresolved | NoWebhook | WebhookUrl

UNRESOLVED = Unresolved()
NO_WEBHOOK = NoWebhook()


def entry_for(url: str | None) -> NoWebhook | WebhookUrl:
    return WebhookUrl(url) if url else NO_WEBHOOK


class WebhookSource(Protocol):
    async def fetch_webhook_url(self, chat_id: str) -> str | None: ...


class WebhookResolutionError(Exception):
    """The store could not be queried; the chat is cached as having no webhook."""

    def __init__(self, chat_id: str, cause: Exception) -> None:
        self.chat_id = chat_id
        self.cause = cause
        super().__init__(f"Could not resolve webhook for chat {chat_id}: {cause}")


class WebhookResolver:
    """Resolves chat ids to webhook URLs, memoizing every outcome."""

    def __init__(
        self,
        source: WebhookSource,
        feed: ChangeFeed | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._source = source
        self._feed = feed
        self._audit = audit_logger
        self._entries: dict[str, NoWebhook | WebhookUrl] = {}
        self._subscription: Subscription | None = None

    def start(self) -> None:
        """Subscribe to chat changes. Subsequent calls are no-ops."""
        if self._subscription is not None or self._feed is None:
            return
        self._subscription = self._feed.subscribe(CHATS_TABLE, self._on_change)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    def lookup(self, chat_id: str) -> CacheEntry:
        """Return the cached entry without querying the store."""
        return self._entries.get(chat_id, UNRESOLVED)

    async def resolve(self, chat_id: str) -> str | None:
        """Return the chat's webhook URL, querying the store only on a miss.

        Raises:
            WebhookResolutionError: If the store query fails. The chat is
                cached as NoWebhook, so later calls return None silently.
        """
        entry = self.lookup(chat_id)
        if not isinstance(entry, Unresolved):
            logger.debug("Webhook cache hit for chat %s", chat_id)
            return entry.url if isinstance(entry, WebhookUrl) else None

        logger.debug("Webhook cache miss for chat %s, querying store", chat_id)
        try:
            url = await self._source.fetch_webhook_url(chat_id)
        except Exception as exc:
            logger.warning("Webhook lookup failed for chat %s: %s", chat_id, exc)
            self._store(chat_id, NO_WEBHOOK)
            self._log_failure(chat_id, exc)
            raise WebhookResolutionError(chat_id, exc) from exc

        resolved = entry_for(url)
        self._store(chat_id, resolved)
        return url or None

    def set(self, chat_id: str, url: str | None) -> None:
        self._store(chat_id, entry_for(url))

    def evict(self, chat_id: str) -> None:
        if chat_id not in self._entries:
            return
        self._entries = {k: v for k, v in self._entries.items() if k != chat_id}
        logger.debug("Evicted webhook cache entry for chat %s", chat_id)

    def clear(self) -> None:
        self._entries = {}

    def _store(self, chat_id: str, entry: NoWebhook | WebhookUrl) -> None:
        self._entries = {**self._entries, chat_id: entry}

    def _on_change(self, event: ChangeEvent) -> None:
        if event.kind == ChangeKind.UPDATE:
            self.set(event.record_id, event.values.get("webhook_url"))
        elif event.kind == ChangeKind.DELETE:
            self.evict(event.record_id)

    def _log_failure(self, chat_id: str, exc: Exception) -> None:
        if not self._audit:
            return
        self._audit.log(AuditEvent(
            event_type=AuditEventType.WEBHOOK_RESOLUTION_FAILURE,
            action="resolve_webhook",
            result="failure",
            risk_level=RiskLevel.MEDIUM,
            details={"chat_id": chat_id, "error": str(exc)},
        ))
