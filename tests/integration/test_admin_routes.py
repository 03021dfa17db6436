"""Integration tests for the admin and public form APIs."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from src.models import AuditEventType
from src.proxy.app import create_app
from src.store.db import ChatDB
from src.webhook.forwarder import WebhookForwarder
from tests.conftest import TOKEN, WEBHOOK_URL, make_form

AUTH = {"Authorization": f"Bearer {TOKEN}"}


def _client(db: ChatDB, audit_logger: MagicMock | None = None) -> AsyncClient:
    forwarder = WebhookForwarder(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="ok")),
    )
    app = create_app(db, TOKEN, forwarder=forwarder, audit_logger=audit_logger)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestAdminChats:
    @pytest.mark.asyncio
    async def test_requires_token(self, db: ChatDB) -> None:
        async with _client(db) as client:
            resp = await client.get("/api/admin/chats")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_chat_crud(self, db: ChatDB, mock_audit_logger: MagicMock) -> None:
        async with _client(db, mock_audit_logger) as client:
            created = await client.post("/api/admin/chats", headers=AUTH, json={
                "name": "Support", "webhook_url": WEBHOOK_URL,
            })
            assert created.status_code == 201
            chat_id = created.json()["id"]

            patched = await client.patch(
                f"/api/admin/chats/{chat_id}", headers=AUTH, json={"webhook_url": None},
            )
            assert patched.json()["webhook_url"] is None

            fetched = await client.get(f"/api/admin/chats/{chat_id}", headers=AUTH)
            assert fetched.json()["name"] == "Support"

            deleted = await client.delete(f"/api/admin/chats/{chat_id}", headers=AUTH)
            assert deleted.status_code == 200

            missing = await client.get(f"/api/admin/chats/{chat_id}", headers=AUTH)
            assert missing.status_code == 404

        actions = [
            c[0][0].action for c in mock_audit_logger.log.call_args_list
            if c[0][0].event_type == AuditEventType.ADMIN_CHANGE
        ]
        assert actions == ["create_chat", "update_chat", "delete_chat"]

    @pytest.mark.asyncio
    async def test_patch_publishes_to_feed(self, db: ChatDB) -> None:
        chat = db.create_chat("Support", webhook_url=WEBHOOK_URL)
        events: list = []
        db.feed.subscribe("chats", events.append)

        async with _client(db) as client:
            await client.patch(
                f"/api/admin/chats/{chat.id}", headers=AUTH,
                json={"webhook_url": "https://new.example.com"},
            )

        assert events[0].values["webhook_url"] == "https://new.example.com"

    @pytest.mark.asyncio
    async def test_patch_name_only_keeps_webhook(
        self, db: ChatDB, mock_audit_logger: MagicMock,
    ) -> None:
        chat = db.create_chat("Support", description="Tier 1", webhook_url=WEBHOOK_URL)

        async with _client(db, mock_audit_logger) as client:
            resp = await client.patch(
                f"/api/admin/chats/{chat.id}", headers=AUTH, json={"name": "Help"},
            )

        assert resp.status_code == 200
        assert resp.json()["name"] == "Help"
        assert resp.json()["description"] == "Tier 1"
        assert resp.json()["webhook_url"] == WEBHOOK_URL
        assert db.get_webhook_url(chat.id) == WEBHOOK_URL
        event = mock_audit_logger.log.call_args[0][0]
        assert event.action == "update_chat"
        assert event.details == {"chat_id": chat.id, "fields": ["name"]}

    @pytest.mark.asyncio
    async def test_patch_missing_chat_returns_404(self, db: ChatDB) -> None:
        async with _client(db) as client:
            resp = await client.patch(
                "/api/admin/chats/missing", headers=AUTH, json={"name": "Help"},
            )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_create_requires_name(self, db: ChatDB) -> None:
        async with _client(db) as client:
            resp = await client.post("/api/admin/chats", headers=AUTH, json={})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_members_and_user_chats(self, db: ChatDB) -> None:
        chat = db.create_chat("Support")
        async with _client(db) as client:
            added = await client.post(
                f"/api/admin/chats/{chat.id}/members", headers=AUTH, json={"user_id": "u1"},
            )
            assert added.status_code == 201
            assert added.json() == ["u1"]

            mine = await client.get("/api/admin/users/u1/chats", headers=AUTH)
            assert [c["id"] for c in mine.json()] == [chat.id]

            removed = await client.delete(
                f"/api/admin/chats/{chat.id}/members/u1", headers=AUTH,
            )
            assert removed.json() == []

            missing = await client.post(
                "/api/admin/chats/nope/members", headers=AUTH, json={"user_id": "u1"},
            )
            assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_roles(self, db: ChatDB) -> None:
        async with _client(db) as client:
            ok = await client.put("/api/admin/roles/u1", headers=AUTH, json={"role": "admin"})
            assert ok.json() == {"user_id": "u1", "role": "admin"}

            bad = await client.put("/api/admin/roles/u1", headers=AUTH, json={"role": "root"})
            assert bad.status_code == 400

            listed = await client.get("/api/admin/roles", headers=AUTH)
            assert listed.json() == {"u1": "admin"}


class TestForms:
    @pytest.mark.asyncio
    async def test_admin_form_lifecycle(self, db: ChatDB) -> None:
        form = make_form(is_published=False).model_dump(mode="json")
        async with _client(db) as client:
            created = await client.post("/api/admin/forms", headers=AUTH, json=form)
            assert created.status_code == 201

            hidden = await client.get("/api/forms/form-1")
            assert hidden.status_code == 404

            published = await client.post(
                "/api/admin/forms/form-1/publish", headers=AUTH, json={"published": True},
            )
            assert published.json()["is_published"] is True

            public = await client.get("/api/forms")
            assert [f["id"] for f in public.json()] == ["form-1"]

    @pytest.mark.asyncio
    async def test_invalid_form_definition_returns_422(self, db: ChatDB) -> None:
        async with _client(db) as client:
            resp = await client.post("/api/admin/forms", headers=AUTH, json={"fields": []})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_public_submit_and_admin_responses(self, db: ChatDB) -> None:
        db.create_form(make_form(webhook_url=WEBHOOK_URL))
        async with _client(db) as client:
            submitted = await client.post("/api/forms/form-1/submit", json={
                "user_email": "a@example.com", "data": {"name": "Ann", "age": 3},
            })
            assert submitted.status_code == 201

            responses = await client.get("/api/admin/forms/form-1/responses", headers=AUTH)
            assert responses.json()[0]["values"] == {"name": "Ann", "age": 3}

    @pytest.mark.asyncio
    async def test_public_submit_validation_errors(self, db: ChatDB) -> None:
        db.create_form(make_form())
        async with _client(db) as client:
            resp = await client.post("/api/forms/form-1/submit", json={
                "user_email": "a@example.com", "data": {"email": "nope"},
            })
        assert resp.status_code == 422
        assert resp.json()["fields"] == {
            "name": "This field is required",
            "email": "Enter a valid email address",
        }

    @pytest.mark.asyncio
    async def test_public_submit_requires_email(self, db: ChatDB) -> None:
        db.create_form(make_form())
        async with _client(db) as client:
            resp = await client.post("/api/forms/form-1/submit", json={"data": {}})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_form(self, db: ChatDB) -> None:
        db.create_form(make_form())
        async with _client(db) as client:
            first = await client.delete("/api/admin/forms/form-1", headers=AUTH)
            second = await client.delete("/api/admin/forms/form-1", headers=AUTH)
        assert first.status_code == 200
        assert second.status_code == 404
