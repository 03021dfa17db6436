"""Webhook response normalizer.

External webhooks answer with heterogeneous JSON. ``normalize`` reduces any
payload to a display text plus an optional avatar URL, checking shapes in a
fixed order:

1. non-empty array -> first element, handled by rules 2-4
2. object -> first non-empty of ``output``, ``response``, ``message``;
   otherwise the JSON-serialized object (unrepaired)
3. string -> the string itself
4. number, bool, null -> its JSON text form
5. empty/absent payload -> FALLBACK_TEXT

Strings are passed through ``repair_links``, which undoes a known
provider bug where the deployment base URL is glued in front of a Google
Drive file link.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

TEXT_KEYS = ("output", "response", "message")
AVATAR_KEYS = ("avatar_url", "profile_avatar", "user_avatar")
FALLBACK_TEXT = "no response from webhook"

_STORAGE_URL = r"https://drive\.google\.com/file/d/[a-zA-Z0-9_-]+/view[^\s()\[\]]*"
_BASE_URL = r"https?://[^\s()\[\]]+?"

# <base-url>/[label](<storage-url>)
_PREFIXED_MARKDOWN_LINK = re.compile(
    rf"{_BASE_URL}/\[([^\]]+)\]\(({_STORAGE_URL})\)"
)
# <base-url>/<storage-url>
_PREFIXED_BARE_LINK = re.compile(rf"{_BASE_URL}/({_STORAGE_URL})")


@dataclass(frozen=True)
class NormalizedResponse:
    text: str
    avatar: str | None = None


def repair_links(text: str) -> str:
    """Strip an erroneous base-URL prefix from storage links."""
    text = _PREFIXED_MARKDOWN_LINK.sub(r"[\1](\2)", text)
    return _PREFIXED_BARE_LINK.sub(r"\1", text)


def repair_response(raw: Any) -> Any:
    """Return a copy of ``raw`` with every displayable string field repaired.

    Top-level strings and strings under TEXT_KEYS, at any depth, are repaired.
    """
    if isinstance(raw, str):
        return repair_links(raw)
    return _repair_nested(raw)


def _repair_nested(value: Any) -> Any:
    if isinstance(value, list):
        return [
            repair_links(item) if isinstance(item, str) else _repair_nested(item)
            for item in value
        ]
    if isinstance(value, dict):
        return {
            key: (
                repair_links(item)
                if key in TEXT_KEYS and isinstance(item, str)
                else _repair_nested(item)
            )
            for key, item in value.items()
        }
    return value


def normalize(raw: Any) -> NormalizedResponse:
    if _is_empty(raw):
        return NormalizedResponse(FALLBACK_TEXT)
    if isinstance(raw, list):
        return _normalize_item(raw[0])
    return _normalize_item(raw)


def _normalize_item(item: Any) -> NormalizedResponse:
    if isinstance(item, dict):
        return _from_object(item)
    if isinstance(item, str):
        return NormalizedResponse(repair_links(item))
    return NormalizedResponse(_to_json(item))


def _from_object(obj: dict[str, Any]) -> NormalizedResponse:
    avatar = _first_present(obj, AVATAR_KEYS)
    if not isinstance(avatar, str):
        avatar = None

    value = _first_present(obj, TEXT_KEYS)
    if value is None:
        return NormalizedResponse(_to_json(obj), avatar)

    repaired = repair_response(value)
    if isinstance(repaired, str):
        return NormalizedResponse(repaired, avatar)
    return NormalizedResponse(_to_json(repaired), avatar)


def _first_present(obj: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = obj.get(key)
        if not _is_empty(value):
            return value
    return None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def display_text(content: str | dict[str, Any] | list[Any]) -> str:
    """Render-time text for a message: repaired strings, pretty JSON otherwise."""
    if isinstance(content, str):
        return repair_links(content)
    return json.dumps(content, indent=2, ensure_ascii=False)
