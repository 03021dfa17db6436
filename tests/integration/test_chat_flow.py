"""End-to-end chat flow: session -> proxy client -> proxy app -> webhook."""

from __future__ import annotations

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from src.chat.notifications import NotificationKind
from src.chat.pipeline import FailureReason, PipelineState
from src.chat.proxy_client import ProxyClient
from src.chat.session import ChatSession
from src.proxy.app import create_app
from src.store.db import ChatDB, StoreWebhookSource
from src.webhook.forwarder import WebhookForwarder
from tests.conftest import STORAGE_LINK, TOKEN, make_author

OLD_HOOK = "https://old.example.com/hook"
NEW_HOOK = "https://new.example.com/hook"


class FakeWebhooks:
    """Routes outbound webhook calls by host and records what was sent."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append((request.url.host, body))
        if self.status != 200:
            return httpx.Response(self.status)
        return httpx.Response(200, json=[{
            "output": f"{request.url.host} got {body['message']}",
            "avatar_url": "https://img.example.com/bot.png",
        }])


@pytest.fixture
def webhooks() -> FakeWebhooks:
    return FakeWebhooks()


def _wire(db: ChatDB, webhooks: FakeWebhooks) -> tuple[ChatSession, object]:
    forwarder = WebhookForwarder(transport=httpx.MockTransport(webhooks))
    app = create_app(db, TOKEN, forwarder=forwarder)
    proxy = ProxyClient("http://relay.test", transport=ASGITransport(app=app))
    session = ChatSession(
        user=make_author(id="u1", name="Ann"),
        source=StoreWebhookSource(db),
        proxy=proxy,
        feed=db.feed,
    )
    return session, app


@pytest.mark.asyncio
async def test_round_trip_appends_normalized_reply(db: ChatDB, webhooks: FakeWebhooks) -> None:
    chat = db.create_chat("Support", webhook_url=OLD_HOOK)
    session, _ = _wire(db, webhooks)

    result = await session.send(chat.id, "ping")

    assert result.state == PipelineState.COMPLETED
    messages = session.messages(chat.id)
    assert [m.content for m in messages] == ["ping", "old.example.com got ping"]
    assert messages[1].author_avatar == "https://img.example.com/bot.png"
    assert webhooks.calls == [
        ("old.example.com", {"chatId": chat.id, "message": "ping", "userId": "u1"}),
    ]


@pytest.mark.asyncio
async def test_admin_edit_reaches_open_session(db: ChatDB, webhooks: FakeWebhooks) -> None:
    chat = db.create_chat("Support", webhook_url=OLD_HOOK)
    session, app = _wire(db, webhooks)
    await session.send(chat.id, "before")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as admin:
        resp = await admin.patch(
            f"/api/admin/chats/{chat.id}",
            headers={"Authorization": f"Bearer {TOKEN}"},
            json={"webhook_url": NEW_HOOK},
        )
        assert resp.status_code == 200

    await session.send(chat.id, "after")

    assert [host for host, _ in webhooks.calls] == ["old.example.com", "new.example.com"]


@pytest.mark.asyncio
async def test_removed_webhook_stops_replies(db: ChatDB, webhooks: FakeWebhooks) -> None:
    chat = db.create_chat("Support", webhook_url=OLD_HOOK)
    session, _ = _wire(db, webhooks)
    await session.send(chat.id, "one")

    db.update_chat(chat.id, webhook_url=None)
    result = await session.send(chat.id, "two")

    assert result.state == PipelineState.NO_WEBHOOK_CONFIGURED
    assert len(webhooks.calls) == 1
    assert [m.content for m in session.messages(chat.id)][-1] == "two"


@pytest.mark.asyncio
async def test_webhook_failure_surfaces_notification(db: ChatDB, webhooks: FakeWebhooks) -> None:
    chat = db.create_chat("Support", webhook_url=OLD_HOOK)
    session, _ = _wire(db, webhooks)
    webhooks.status = 502

    result = await session.send(chat.id, "hello")

    assert result.failure == FailureReason.WEBHOOK_ERROR
    assert [m.content for m in session.messages(chat.id)] == ["hello"]
    note = session.notifications.items[0]
    assert note.kind == NotificationKind.WEBHOOK_ERROR
    assert "502" in note.description
    assert not session.typing.is_active(chat.id)


@pytest.mark.asyncio
async def test_unknown_chat_is_proxy_error(db: ChatDB, webhooks: FakeWebhooks) -> None:
    session, _ = _wire(db, webhooks)
    session.register_chat(db.create_chat("Ghost", webhook_url=OLD_HOOK, chat_id="ghost"))
    db.conn.execute("DELETE FROM chats WHERE id = 'ghost'")

    result = await session.send("ghost", "anyone?")

    assert result.failure == FailureReason.PROXY_ERROR
    assert "500" in session.notifications.items[0].description


@pytest.mark.asyncio
async def test_link_repair_in_reply(db: ChatDB) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "response": f"Photo: https://app.example.com/[Ver foto]({STORAGE_LINK})",
        })

    chat = db.create_chat("Photos", webhook_url=OLD_HOOK)
    forwarder = WebhookForwarder(transport=httpx.MockTransport(handler))
    app = create_app(db, TOKEN, forwarder=forwarder)
    session = ChatSession(
        user=make_author(),
        source=StoreWebhookSource(db),
        proxy=ProxyClient("http://relay.test", transport=ASGITransport(app=app)),
        feed=db.feed,
    )

    await session.send(chat.id, "show me")

    assert session.messages(chat.id)[-1].content == f"Photo: [Ver foto]({STORAGE_LINK})"


@pytest.mark.asyncio
async def test_closing_session_releases_subscription(db: ChatDB, webhooks: FakeWebhooks) -> None:
    chat = db.create_chat("Support", webhook_url=OLD_HOOK)
    async with _wire(db, webhooks)[0] as session:
        await session.send(chat.id, "hi")
        assert db.feed.subscriber_count("chats") == 1

    assert db.feed.subscriber_count("chats") == 0
    db.update_chat(chat.id, webhook_url=NEW_HOOK)
    assert session.messages(chat.id) == ()
