"""Tests for webhook response normalization and link repair."""

from __future__ import annotations

import json

import pytest

from src.webhook.normalizer import (
    FALLBACK_TEXT,
    NormalizedResponse,
    display_text,
    normalize,
    repair_links,
    repair_response,
)
from tests.conftest import STORAGE_LINK

PREFIX = "https://app.example.com"


class TestNormalize:
    def test_array_uses_first_element_output(self) -> None:
        result = normalize([{"output": "Hi", "avatar_url": "a.png"}, {"output": "ignored"}])
        assert result == NormalizedResponse("Hi", "a.png")

    def test_text_key_priority(self) -> None:
        raw = {"message": "third", "response": "second", "output": "first"}
        assert normalize(raw).text == "first"
        assert normalize({"message": "third", "response": "second"}).text == "second"
        assert normalize({"message": "third"}).text == "third"

    def test_empty_text_keys_are_skipped(self) -> None:
        assert normalize({"output": "", "response": "  ", "message": "ok"}).text == "ok"

    def test_avatar_key_priority(self) -> None:
        raw = {
            "output": "x",
            "user_avatar": "u.png",
            "profile_avatar": "p.png",
            "avatar_url": "a.png",
        }
        assert normalize(raw).avatar == "a.png"
        assert normalize({"output": "x", "user_avatar": "u.png"}).avatar == "u.png"

    def test_non_string_avatar_is_ignored(self) -> None:
        assert normalize({"output": "x", "avatar_url": 42}).avatar is None

    def test_plain_string(self) -> None:
        assert normalize("plain text") == NormalizedResponse("plain text")

    @pytest.mark.parametrize("raw", [None, "", "   ", [], {}])
    def test_empty_payload_falls_back(self, raw: object) -> None:
        assert normalize(raw) == NormalizedResponse(FALLBACK_TEXT)

    @pytest.mark.parametrize(("raw", "expected"), [(42, "42"), (1.5, "1.5"), (True, "true")])
    def test_scalars_become_json_text(self, raw: object, expected: str) -> None:
        assert normalize(raw).text == expected

    def test_array_with_null_first_element(self) -> None:
        assert normalize([None]).text == "null"

    def test_object_without_text_keys_is_serialized(self) -> None:
        raw = {"foo": 1, "bar": "baz"}
        assert json.loads(normalize(raw).text) == raw

    def test_fallback_serialization_is_not_repaired(self) -> None:
        raw = {"link": f"{PREFIX}/{STORAGE_LINK}"}
        assert f"{PREFIX}/{STORAGE_LINK}" in normalize(raw).text

    def test_structured_output_is_serialized(self) -> None:
        result = normalize({"output": {"answer": 1}})
        assert json.loads(result.text) == {"answer": 1}

    def test_output_link_is_repaired(self) -> None:
        raw = {"output": f"See {PREFIX}/[Ver foto]({STORAGE_LINK})"}
        assert normalize(raw).text == f"See [Ver foto]({STORAGE_LINK})"

    def test_string_array_element(self) -> None:
        assert normalize(["first", "second"]).text == "first"


class TestRepairLinks:
    def test_prefixed_markdown_link(self) -> None:
        text = f"{PREFIX}/[Ver foto]({STORAGE_LINK})"
        assert repair_links(text) == f"[Ver foto]({STORAGE_LINK})"

    def test_prefixed_bare_link(self) -> None:
        text = f"photo: {PREFIX}/{STORAGE_LINK}?usp=sharing"
        assert repair_links(text) == f"photo: {STORAGE_LINK}?usp=sharing"

    def test_well_formed_link_untouched(self) -> None:
        text = f"[Ver foto]({STORAGE_LINK}) and {STORAGE_LINK}"
        assert repair_links(text) == text

    def test_unrelated_urls_untouched(self) -> None:
        text = f"{PREFIX}/docs/page and https://example.org/x"
        assert repair_links(text) == text

    def test_multiple_links_repaired(self) -> None:
        text = (
            f"{PREFIX}/[a]({STORAGE_LINK}) "
            f"http://localhost:3000/[b](https://drive.google.com/file/d/XYZ_9-a/view)"
        )
        assert repair_links(text) == (
            f"[a]({STORAGE_LINK}) [b](https://drive.google.com/file/d/XYZ_9-a/view)"
        )

    def test_repair_response_walks_nested_text_keys(self) -> None:
        broken = f"{PREFIX}/{STORAGE_LINK}"
        raw = [{"output": broken, "other": broken, "data": {"message": broken}}]

        repaired = repair_response(raw)

        assert repaired[0]["output"] == STORAGE_LINK
        assert repaired[0]["other"] == broken
        assert repaired[0]["data"]["message"] == STORAGE_LINK
        assert raw[0]["output"] == broken


class TestDisplayText:
    def test_string_content_is_repaired(self) -> None:
        assert display_text(f"{PREFIX}/{STORAGE_LINK}") == STORAGE_LINK

    def test_structured_content_is_pretty_json(self) -> None:
        assert display_text({"a": 1}) == '{\n  "a": 1\n}'
