"""Volatile, per-chat ordered message log.

Each mutation swaps in a new mapping and a new tuple, so a reader holding
a snapshot from ``get`` never observes a partial update.
"""

from __future__ import annotations

from src.models import Message


class MessageLog:
    def __init__(self) -> None:
        self._messages: dict[str, tuple[Message, ...]] = {}

    def get(self, chat_id: str) -> tuple[Message, ...]:
        return self._messages.get(chat_id, ())

    def chat_ids(self) -> list[str]:
        return list(self._messages)

    def append(self, message: Message) -> None:
        current = self._messages.get(message.chat_id, ())
        self._messages = {**self._messages, message.chat_id: (*current, message)}

    def clear_chat(self, chat_id: str) -> None:
        self._messages = {k: v for k, v in self._messages.items() if k != chat_id}

    def clear(self) -> None:
        self._messages = {}

    def __len__(self) -> int:
        return sum(len(v) for v in self._messages.values())
