"""In-process change-notification feed for store tables.

Writers publish a ChangeEvent per mutated row; readers subscribe per table
and receive a Subscription handle that must be closed on disposal.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A single row change. UPDATE carries the new values, DELETE only the old id."""

    table: str
    kind: ChangeKind
    record_id: str
    values: dict[str, Any] = field(default_factory=dict)


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription:
    """Cancellable handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed: ChangeFeed, table: str, handler: ChangeHandler) -> None:
        self._feed = feed
        self.table = table
        self.handler = handler
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)
        logger.debug("Closed subscription on %s", self.table)


class ChangeFeed:
    """Publish/subscribe hub keyed by table name."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, tuple[Subscription, ...]] = {}

    def subscribe(self, table: str, handler: ChangeHandler) -> Subscription:
        sub = Subscription(self, table, handler)
        current = self._subscriptions.get(table, ())
        self._subscriptions = {**self._subscriptions, table: (*current, sub)}
        logger.debug("Subscribed to %s changes", table)
        return sub

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, ()))

    def publish(self, event: ChangeEvent) -> None:
        for sub in self._subscriptions.get(event.table, ()):
            try:
                sub.handler(event)
            except Exception:
                logger.exception(
                    "Change handler failed for %s %s on %s",
                    event.kind.value, event.record_id, event.table,
                )

    def _remove(self, sub: Subscription) -> None:
        remaining = tuple(
            s for s in self._subscriptions.get(sub.table, ()) if s is not sub
        )
        updated = dict(self._subscriptions)
        if remaining:
            updated[sub.table] = remaining
        else:
            updated.pop(sub.table, None)
        self._subscriptions = updated
