"""SQLite store for chats, memberships, roles, forms and form responses.

Chat updates and deletions are published on the ``chats`` table of the
attached ChangeFeed so that in-session webhook caches stay coherent.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.models import ChatRecord, FormDefinition, FormField, FormResponse, Role
from src.store.feed import ChangeEvent, ChangeFeed, ChangeKind

CHATS_TABLE = "chats"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chats (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    webhook_url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_members (
    chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    PRIMARY KEY (chat_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_chat_members_user ON chat_members(user_id);

CREATE TABLE IF NOT EXISTS user_roles (
    user_id TEXT PRIMARY KEY,
    role TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS forms (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    webhook_url TEXT,
    is_published INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS form_fields (
    id TEXT PRIMARY KEY,
    form_id TEXT NOT NULL REFERENCES forms(id) ON DELETE CASCADE,
    field_type TEXT NOT NULL,
    label TEXT NOT NULL,
    placeholder TEXT,
    help_text TEXT,
    is_required INTEGER NOT NULL DEFAULT 0,
    field_order INTEGER NOT NULL DEFAULT 0,
    options_json TEXT,
    default_json TEXT
);

CREATE TABLE IF NOT EXISTS form_responses (
    id TEXT PRIMARY KEY,
    form_id TEXT NOT NULL REFERENCES forms(id) ON DELETE CASCADE,
    user_email TEXT NOT NULL,
    submitted_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS form_response_values (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    response_id TEXT NOT NULL REFERENCES form_responses(id) ON DELETE CASCADE,
    field_id TEXT NOT NULL,
    value TEXT,
    value_json TEXT
);
"""

_UNSET: Any = object()


class ChatNotFoundError(Exception):
    def __init__(self, chat_id: str) -> None:
        self.chat_id = chat_id
        super().__init__(f"Chat not found: {chat_id}")


class FormNotFoundError(Exception):
    def __init__(self, form_id: str) -> None:
        self.form_id = form_id
        super().__init__(f"Form not found: {form_id}")


class ChatDB:
    """SQLite-backed relational store."""

    def __init__(self, db_path: str, feed: ChangeFeed | None = None) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        self.feed = feed or ChangeFeed()

    def close(self) -> None:
        self.conn.close()

    # --- Chats ---

    def create_chat(
        self,
        name: str,
        description: str = "",
        webhook_url: str | None = None,
        chat_id: str | None = None,
    ) -> ChatRecord:
        chat = ChatRecord(
            id=chat_id or uuid.uuid4().hex,
            name=name,
            description=description,
            webhook_url=webhook_url or None,
        )
        self.conn.execute(
            """INSERT INTO chats (id, name, description, webhook_url, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (chat.id, chat.name, chat.description, chat.webhook_url, chat.created_at),
        )
        self.conn.commit()
        return chat

    def get_chat(self, chat_id: str) -> ChatRecord | None:
        row = self.conn.execute(
            "SELECT * FROM chats WHERE id = ?", (chat_id,)
        ).fetchone()
        return ChatRecord(**dict(row)) if row else None

    def list_chats(self) -> list[ChatRecord]:
        rows = self.conn.execute("SELECT * FROM chats ORDER BY name").fetchall()
        return [ChatRecord(**dict(r)) for r in rows]

    def update_chat(
        self,
        chat_id: str,
        name: str | None = None,
        description: str | None = None,
        webhook_url: str | None = _UNSET,
    ) -> ChatRecord:
        """Update a chat. Pass ``webhook_url=None`` to remove its webhook."""
        chat = self.get_chat(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        updated = chat.model_copy(update={
            "name": name if name is not None else chat.name,
            "description": description if description is not None else chat.description,
            "webhook_url": chat.webhook_url if webhook_url is _UNSET else (webhook_url or None),
        })
        self.conn.execute(
            "UPDATE chats SET name = ?, description = ?, webhook_url = ? WHERE id = ?",
            (updated.name, updated.description, updated.webhook_url, chat_id),
        )
        self.conn.commit()
        self.feed.publish(ChangeEvent(
            table=CHATS_TABLE,
            kind=ChangeKind.UPDATE,
            record_id=chat_id,
            values=updated.model_dump(),
        ))
        return updated

    def delete_chat(self, chat_id: str) -> None:
        cursor = self.conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
        self.conn.commit()
        if cursor.rowcount == 0:
            raise ChatNotFoundError(chat_id)
        self.feed.publish(ChangeEvent(
            table=CHATS_TABLE, kind=ChangeKind.DELETE, record_id=chat_id,
        ))

    def get_webhook_url(self, chat_id: str) -> str | None:
        """Return the chat's configured webhook, None when unset.

        Raises:
            ChatNotFoundError: If the chat does not exist.
        """
        row = self.conn.execute(
            "SELECT webhook_url FROM chats WHERE id = ?", (chat_id,)
        ).fetchone()
        if row is None:
            raise ChatNotFoundError(chat_id)
        return row["webhook_url"] or None

    # --- Membership and roles ---

    def add_member(self, chat_id: str, user_id: str) -> None:
        if self.get_chat(chat_id) is None:
            raise ChatNotFoundError(chat_id)
        self.conn.execute(
            "INSERT OR IGNORE INTO chat_members (chat_id, user_id) VALUES (?, ?)",
            (chat_id, user_id),
        )
        self.conn.commit()

    def remove_member(self, chat_id: str, user_id: str) -> None:
        self.conn.execute(
            "DELETE FROM chat_members WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        self.conn.commit()

    def list_members(self, chat_id: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT user_id FROM chat_members WHERE chat_id = ? ORDER BY user_id",
            (chat_id,),
        ).fetchall()
        return [r["user_id"] for r in rows]

    def list_chats_for_user(self, user_id: str) -> list[ChatRecord]:
        rows = self.conn.execute(
            """SELECT c.* FROM chats c
               JOIN chat_members m ON m.chat_id = c.id
               WHERE m.user_id = ? ORDER BY c.name""",
            (user_id,),
        ).fetchall()
        return [ChatRecord(**dict(r)) for r in rows]

    def set_role(self, user_id: str, role: Role) -> None:
        self.conn.execute(
            """INSERT INTO user_roles (user_id, role) VALUES (?, ?)
               ON CONFLICT(user_id) DO UPDATE SET role=excluded.role""",
            (user_id, role.value),
        )
        self.conn.commit()

    def get_role(self, user_id: str) -> Role:
        row = self.conn.execute(
            "SELECT role FROM user_roles WHERE user_id = ?", (user_id,)
        ).fetchone()
        return Role(row["role"]) if row else Role.USER

    def list_roles(self) -> dict[str, Role]:
        rows = self.conn.execute(
            "SELECT user_id, role FROM user_roles ORDER BY user_id"
        ).fetchall()
        return {r["user_id"]: Role(r["role"]) for r in rows}

    # --- Forms ---

    def create_form(self, form: FormDefinition) -> FormDefinition:
        self.conn.execute(
            """INSERT INTO forms (id, title, description, webhook_url, is_published, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                form.id, form.title, form.description, form.webhook_url,
                int(form.is_published), form.created_at,
            ),
        )
        self.conn.executemany(
            """INSERT INTO form_fields
               (id, form_id, field_type, label, placeholder, help_text,
                is_required, field_order, options_json, default_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    f.id, form.id, f.field_type.value, f.label, f.placeholder,
                    f.help_text, int(f.is_required), f.field_order,
                    json.dumps(f.options) if f.options is not None else None,
                    json.dumps(f.default_value) if f.default_value is not None else None,
                )
                for f in form.fields
            ],
        )
        self.conn.commit()
        return form

    def get_form(self, form_id: str) -> FormDefinition | None:
        row = self.conn.execute(
            "SELECT * FROM forms WHERE id = ?", (form_id,)
        ).fetchone()
        if row is None:
            return None
        field_rows = self.conn.execute(
            "SELECT * FROM form_fields WHERE form_id = ? ORDER BY field_order",
            (form_id,),
        ).fetchall()
        return self._row_to_form(row, field_rows)

    def list_forms(self, published_only: bool = False) -> list[FormDefinition]:
        query = "SELECT id FROM forms"
        if published_only:
            query += " WHERE is_published = 1"
        query += " ORDER BY created_at DESC"
        forms = [self.get_form(r["id"]) for r in self.conn.execute(query).fetchall()]
        return [f for f in forms if f is not None]

    def set_form_published(self, form_id: str, published: bool) -> FormDefinition:
        cursor = self.conn.execute(
            "UPDATE forms SET is_published = ? WHERE id = ?",
            (int(published), form_id),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            raise FormNotFoundError(form_id)
        form = self.get_form(form_id)
        if form is None:
            # Deleted between the update and the read
            raise FormNotFoundError(form_id)
        return form

    def delete_form(self, form_id: str) -> None:
        cursor = self.conn.execute("DELETE FROM forms WHERE id = ?", (form_id,))
        self.conn.commit()
        if cursor.rowcount == 0:
            raise FormNotFoundError(form_id)

    # --- Responses ---

    def save_response(
        self, form_id: str, user_email: str, values: dict[str, Any],
    ) -> FormResponse:
        if self.get_form(form_id) is None:
            raise FormNotFoundError(form_id)
        response = FormResponse(
            id=uuid.uuid4().hex,
            form_id=form_id,
            user_email=user_email,
            submitted_at=datetime.now(UTC).isoformat(),
            values=values,
        )
        self.conn.execute(
            """INSERT INTO form_responses (id, form_id, user_email, submitted_at)
               VALUES (?, ?, ?, ?)""",
            (response.id, form_id, user_email, response.submitted_at),
        )
        self.conn.executemany(
            """INSERT INTO form_response_values (response_id, field_id, value, value_json)
               VALUES (?, ?, ?, ?)""",
            [
                (
                    response.id,
                    field_id,
                    value if isinstance(value, str) else json.dumps(value),
                    None if isinstance(value, str) else json.dumps(value),
                )
                for field_id, value in values.items()
            ],
        )
        self.conn.commit()
        return response

    def list_responses(self, form_id: str) -> list[FormResponse]:
        rows = self.conn.execute(
            "SELECT * FROM form_responses WHERE form_id = ? ORDER BY submitted_at",
            (form_id,),
        ).fetchall()
        responses = []
        for row in rows:
            value_rows = self.conn.execute(
                "SELECT field_id, value, value_json FROM form_response_values "
                "WHERE response_id = ? ORDER BY id",
                (row["id"],),
            ).fetchall()
            values = {
                v["field_id"]: (
                    v["value"] if v["value_json"] is None else json.loads(v["value_json"])
                )
                for v in value_rows
            }
            responses.append(FormResponse(**dict(row), values=values))
        return responses

    @staticmethod
    def _row_to_form(row: sqlite3.Row, field_rows: list[sqlite3.Row]) -> FormDefinition:
        fields = [
            FormField(
                id=f["id"],
                field_type=f["field_type"],
                label=f["label"],
                placeholder=f["placeholder"],
                help_text=f["help_text"],
                is_required=bool(f["is_required"]),
                field_order=f["field_order"],
                options=json.loads(f["options_json"]) if f["options_json"] else None,
                default_value=json.loads(f["default_json"]) if f["default_json"] else None,
            )
            for f in field_rows
        ]
        return FormDefinition(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            webhook_url=row["webhook_url"],
            is_published=bool(row["is_published"]),
            created_at=row["created_at"],
            fields=fields,
        )


class StoreWebhookSource:
    """Async lookup adapter over ChatDB for the webhook resolver."""

    def __init__(self, db: ChatDB) -> None:
        self._db = db

    async def fetch_webhook_url(self, chat_id: str) -> str | None:
        return self._db.get_webhook_url(chat_id)
