"""Admin API endpoints for chats, memberships, roles and form definitions.

All routes live under /api/admin and are guarded by AuthMiddleware.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.models import AuditEvent, AuditEventType, FormDefinition, RiskLevel, Role
from src.store.db import ChatNotFoundError, FormNotFoundError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.store.db import ChatDB

logger = logging.getLogger(__name__)


def create_admin_router(
    db: ChatDB,
    audit_logger: AuditLogger | None = None,
) -> APIRouter:
    """Create the admin API router."""
    router = APIRouter(prefix="/api/admin")

    def audit(action: str, details: dict[str, object]) -> None:
        if audit_logger:
            audit_logger.log(AuditEvent(
                event_type=AuditEventType.ADMIN_CHANGE,
                action=action,
                result="success",
                risk_level=RiskLevel.MEDIUM,
                details=details,
            ))

    # --- Chats ---

    @router.get("/chats")
    async def list_chats() -> JSONResponse:
        return JSONResponse([c.model_dump() for c in db.list_chats()])

    @router.post("/chats")
    async def create_chat(request: Request) -> JSONResponse:
        body = await request.json()
        name = body.get("name")
        if not name:
            return JSONResponse({"error": "name is required"}, status_code=400)
        chat = db.create_chat(
            name=name,
            description=body.get("description", ""),
            webhook_url=body.get("webhook_url"),
        )
        audit("create_chat", {"chat_id": chat.id})
        return JSONResponse(chat.model_dump(), status_code=201)

    @router.get("/chats/{chat_id}")
    async def get_chat(chat_id: str) -> JSONResponse:
        chat = db.get_chat(chat_id)
        if chat is None:
            return JSONResponse({"error": "Chat not found"}, status_code=404)
        return JSONResponse(chat.model_dump())

    @router.patch("/chats/{chat_id}")
    async def update_chat(chat_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        webhook: dict[str, str | None] = {}
        if "webhook_url" in body:
            webhook["webhook_url"] = body["webhook_url"]
        try:
            chat = db.update_chat(
                chat_id, name=body.get("name"), description=body.get("description"), **webhook,
            )
        except ChatNotFoundError:
            return JSONResponse({"error": "Chat not found"}, status_code=404)
        fields = sorted(k for k in ("name", "description", "webhook_url") if k in body)
        audit("update_chat", {"chat_id": chat_id, "fields": fields})
        return JSONResponse(chat.model_dump())

    @router.delete("/chats/{chat_id}")
    async def delete_chat(chat_id: str) -> JSONResponse:
        try:
            db.delete_chat(chat_id)
        except ChatNotFoundError:
            return JSONResponse({"error": "Chat not found"}, status_code=404)
        audit("delete_chat", {"chat_id": chat_id})
        return JSONResponse({"status": "deleted", "chat_id": chat_id})

    @router.get("/chats/{chat_id}/members")
    async def list_members(chat_id: str) -> JSONResponse:
        return JSONResponse(db.list_members(chat_id))

    @router.post("/chats/{chat_id}/members")
    async def add_member(chat_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        user_id = body.get("user_id")
        if not user_id:
            return JSONResponse({"error": "user_id is required"}, status_code=400)
        try:
            db.add_member(chat_id, user_id)
        except ChatNotFoundError:
            return JSONResponse({"error": "Chat not found"}, status_code=404)
        audit("add_member", {"chat_id": chat_id, "user_id": user_id})
        return JSONResponse(db.list_members(chat_id), status_code=201)

    @router.delete("/chats/{chat_id}/members/{user_id}")
    async def remove_member(chat_id: str, user_id: str) -> JSONResponse:
        db.remove_member(chat_id, user_id)
        audit("remove_member", {"chat_id": chat_id, "user_id": user_id})
        return JSONResponse(db.list_members(chat_id))

    @router.get("/users/{user_id}/chats")
    async def list_user_chats(user_id: str) -> JSONResponse:
        return JSONResponse([c.model_dump() for c in db.list_chats_for_user(user_id)])

    # --- Roles ---

    @router.get("/roles")
    async def list_roles() -> JSONResponse:
        return JSONResponse({user: role.value for user, role in db.list_roles().items()})

    @router.put("/roles/{user_id}")
    async def set_role(user_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        try:
            role = Role(body.get("role"))
        except ValueError:
            return JSONResponse(
                {"error": f"role must be one of {[r.value for r in Role]}"},
                status_code=400,
            )
        db.set_role(user_id, role)
        audit("set_role", {"user_id": user_id, "role": role.value})
        return JSONResponse({"user_id": user_id, "role": role.value})

    # --- Forms ---

    @router.get("/forms")
    async def list_forms() -> JSONResponse:
        return JSONResponse([f.model_dump(mode="json") for f in db.list_forms()])

    @router.post("/forms")
    async def create_form(request: Request) -> JSONResponse:
        try:
            form = FormDefinition.model_validate(await request.json())
        except ValidationError as e:
            return JSONResponse(
                {"error": e.errors(include_url=False, include_context=False)},
                status_code=422,
            )
        db.create_form(form)
        audit("create_form", {"form_id": form.id})
        return JSONResponse(form.model_dump(mode="json"), status_code=201)

    @router.get("/forms/{form_id}")
    async def get_form(form_id: str) -> JSONResponse:
        form = db.get_form(form_id)
        if form is None:
            return JSONResponse({"error": "Form not found"}, status_code=404)
        return JSONResponse(form.model_dump(mode="json"))

    @router.post("/forms/{form_id}/publish")
    async def publish_form(form_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        try:
            form = db.set_form_published(form_id, bool(body.get("published", True)))
        except FormNotFoundError:
            return JSONResponse({"error": "Form not found"}, status_code=404)
        audit("publish_form", {"form_id": form_id, "published": form.is_published})
        return JSONResponse(form.model_dump(mode="json"))

    @router.delete("/forms/{form_id}")
    async def delete_form(form_id: str) -> JSONResponse:
        try:
            db.delete_form(form_id)
        except FormNotFoundError:
            return JSONResponse({"error": "Form not found"}, status_code=404)
        audit("delete_form", {"form_id": form_id})
        return JSONResponse({"status": "deleted", "form_id": form_id})

    @router.get("/forms/{form_id}/responses")
    async def list_responses(form_id: str) -> JSONResponse:
        if db.get_form(form_id) is None:
            return JSONResponse({"error": "Form not found"}, status_code=404)
        return JSONResponse([r.model_dump(mode="json") for r in db.list_responses(form_id)])

    return router
