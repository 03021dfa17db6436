"""Click CLI for chat administration, form submission and terminal chat sessions."""

from __future__ import annotations

import asyncio
import json
import sys

import click

from src.audit.logger import AuditLogger
from src.chat.proxy_client import ProxyClient
from src.chat.session import ChatSession
from src.forms.service import FormService, FormValidationError
from src.models import Author, Message
from src.store.db import ChatDB, ChatNotFoundError, FormNotFoundError, StoreWebhookSource
from src.webhook.forwarder import DEFAULT_TIMEOUT_SECONDS, WebhookForwarder
from src.webhook.normalizer import display_text


@click.group()
@click.option("--db", envvar="CHATRELAY_DB_PATH", default="data/chatrelay.db",
              help="SQLite database path.")
@click.option("--audit-log", envvar="CHATRELAY_AUDIT_LOG_PATH", default=None,
              help="Audit log file path.")
@click.pass_context
def cli(ctx: click.Context, db: str, audit_log: str | None) -> None:
    """chatrelay administration and chat CLI."""
    ctx.ensure_object(dict)
    ctx.obj["db"] = ChatDB(db)
    ctx.obj["audit"] = AuditLogger.from_env(audit_log) if audit_log else None


# --- Chats ---


@cli.group("chats")
def chats_group() -> None:
    """Manage chat rooms."""


@chats_group.command("list")
@click.pass_context
def chats_list(ctx: click.Context) -> None:
    db: ChatDB = ctx.obj["db"]
    click.echo(json.dumps([c.model_dump() for c in db.list_chats()], indent=2))


@chats_group.command("create")
@click.argument("name")
@click.option("--description", default="", help="Chat description.")
@click.option("--webhook-url", default=None, help="Webhook that answers messages.")
@click.option("--id", "chat_id", default=None, help="Explicit chat id.")
@click.pass_context
def chats_create(
    ctx: click.Context, name: str, description: str, webhook_url: str | None,
    chat_id: str | None,
) -> None:
    db: ChatDB = ctx.obj["db"]
    chat = db.create_chat(name, description, webhook_url, chat_id=chat_id)
    click.echo(chat.model_dump_json(indent=2))


@chats_group.command("update")
@click.argument("chat_id")
@click.option("--name", default=None)
@click.option("--description", default=None)
@click.option("--webhook-url", default=None, help="New webhook URL.")
@click.option("--clear-webhook", is_flag=True, help="Remove the chat's webhook.")
@click.pass_context
def chats_update(
    ctx: click.Context, chat_id: str, name: str | None, description: str | None,
    webhook_url: str | None, clear_webhook: bool,
) -> None:
    db: ChatDB = ctx.obj["db"]
    changes: dict[str, str | None] = {}
    if clear_webhook:
        changes["webhook_url"] = None
    elif webhook_url is not None:
        changes["webhook_url"] = webhook_url
    try:
        chat = db.update_chat(chat_id, name=name, description=description, **changes)
    except ChatNotFoundError as e:
        raise click.ClickException(str(e)) from e
    click.echo(chat.model_dump_json(indent=2))


@chats_group.command("delete")
@click.argument("chat_id")
@click.pass_context
def chats_delete(ctx: click.Context, chat_id: str) -> None:
    db: ChatDB = ctx.obj["db"]
    try:
        db.delete_chat(chat_id)
    except ChatNotFoundError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Deleted chat: {chat_id}")


@chats_group.command("add-member")
@click.argument("chat_id")
@click.argument("user_id")
@click.pass_context
def chats_add_member(ctx: click.Context, chat_id: str, user_id: str) -> None:
    db: ChatDB = ctx.obj["db"]
    try:
        db.add_member(chat_id, user_id)
    except ChatNotFoundError as e:
        raise click.ClickException(str(e)) from e
    click.echo(json.dumps(db.list_members(chat_id)))


# --- Forms ---


@cli.group("forms")
def forms_group() -> None:
    """Inspect and submit forms."""


@forms_group.command("list")
@click.option("--published", is_flag=True, help="Only published forms.")
@click.pass_context
def forms_list(ctx: click.Context, published: bool) -> None:
    db: ChatDB = ctx.obj["db"]
    output = [
        {"id": f.id, "title": f.title, "is_published": f.is_published}
        for f in db.list_forms(published_only=published)
    ]
    click.echo(json.dumps(output, indent=2))


@forms_group.command("show")
@click.argument("form_id")
@click.pass_context
def forms_show(ctx: click.Context, form_id: str) -> None:
    db: ChatDB = ctx.obj["db"]
    form = db.get_form(form_id)
    if form is None:
        raise click.ClickException(f"Form not found: {form_id}")
    click.echo(form.model_dump_json(indent=2))


@forms_group.command("submit")
@click.argument("form_id")
@click.option("--email", required=True, help="Submitting user's email.")
@click.option("--field", "fields", multiple=True, help="FIELD_ID=VALUE, repeatable.")
@click.pass_context
def forms_submit(
    ctx: click.Context, form_id: str, email: str, fields: tuple[str, ...],
) -> None:
    db: ChatDB = ctx.obj["db"]
    data: dict[str, str] = {}
    for item in fields:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected FIELD_ID=VALUE, got {item!r}")
        data[key] = value

    service = FormService(db, WebhookForwarder(audit_logger=ctx.obj["audit"]), ctx.obj["audit"])
    try:
        response = asyncio.run(service.submit(form_id, email, data))
    except FormNotFoundError as e:
        raise click.ClickException(str(e)) from e
    except FormValidationError as e:
        for field_id, message in e.errors.items():
            click.echo(f"{field_id}: {message}", err=True)
        raise click.ClickException("Validation failed") from e
    click.echo(f"Response stored: {response.id}")


# --- Chat ---


@cli.command("chat")
@click.argument("chat_id")
@click.argument("messages", nargs=-1)
@click.option("--user", "user_id", required=True, help="Sending user's id.")
@click.option("--name", default=None, help="Sending user's display name.")
@click.option("--proxy-url", envvar="CHATRELAY_PROXY_URL", default="http://localhost:8000",
              help="Base URL of the chatrelay server.")
@click.option("--timeout", type=float, default=DEFAULT_TIMEOUT_SECONDS,
              help="Seconds to wait for each webhook reply.")
@click.pass_context
def chat(
    ctx: click.Context, chat_id: str, messages: tuple[str, ...], user_id: str,
    name: str | None, proxy_url: str, timeout: float,
) -> None:
    """Send MESSAGES (or stdin lines) to CHAT_ID and print the conversation."""
    db: ChatDB = ctx.obj["db"]
    lines = list(messages) or [line.rstrip("\n") for line in sys.stdin]
    session = ChatSession(
        user=Author(id=user_id, name=name or user_id),
        source=StoreWebhookSource(db),
        proxy=ProxyClient(proxy_url),
        feed=db.feed,
        audit_logger=ctx.obj["audit"],
        timeout=timeout,
    )
    asyncio.run(_run_chat(session, chat_id, lines))


async def _run_chat(session: ChatSession, chat_id: str, lines: list[str]) -> None:
    async with session:
        for line in lines:
            await session.send(chat_id, line)
            for note in session.notifications.drain():
                click.echo(f"! {note.title}: {note.description}", err=True)
        for message in session.messages(chat_id):
            click.echo(_format_message(message))


def _format_message(message: Message) -> str:
    author = message.author_name or message.author_id
    return f"{author}: {display_text(message.content)}"
