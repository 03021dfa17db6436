"""FastAPI application: webhook forwarding proxy, image proxy, forms and admin API."""

from __future__ import annotations

import json
import logging
import os
import sqlite3

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.forms.service import FormService
from src.proxy.admin_routes import create_admin_router
from src.proxy.auth_middleware import AuthMiddleware
from src.proxy.form_routes import create_form_router
from src.store.db import ChatDB, ChatNotFoundError
from src.webhook.forwarder import DEFAULT_TIMEOUT_SECONDS, WebhookForwarder
from src.webhook.models import TIMEOUT_ERROR_PREFIX, ChatWebhookPayload

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    token = os.environ["CHATRELAY_API_TOKEN"]
    db_path = os.environ.get("CHATRELAY_DB_PATH", "data/chatrelay.db")
    audit_log = os.environ.get("CHATRELAY_AUDIT_LOG_PATH")
    timeout = float(os.environ.get("CHATRELAY_WEBHOOK_TIMEOUT", str(DEFAULT_TIMEOUT_SECONDS)))

    audit_logger = AuditLogger.from_env(audit_log) if audit_log else None
    forwarder = WebhookForwarder(timeout=timeout, audit_logger=audit_logger)
    return create_app(ChatDB(db_path), token, forwarder, audit_logger)


def create_app(
    db: ChatDB,
    token: str,
    forwarder: WebhookForwarder | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the chatrelay FastAPI app."""
    app = FastAPI(docs_url=None, redoc_url=None)
    forwarder = forwarder or WebhookForwarder(audit_logger=audit_logger)
    form_service = FormService(db, forwarder, audit_logger)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/webhook-proxy")
    async def webhook_proxy(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict) or ChatWebhookPayload.missing_fields(body):
            return JSONResponse(
                {"success": False, "error": "chatId, message and userId are required"},
                status_code=400,
            )
        payload = ChatWebhookPayload.from_json(body)

        try:
            webhook_url = db.get_webhook_url(payload.chat_id)
        except (ChatNotFoundError, sqlite3.Error) as e:
            logger.error("Could not load webhook for chat %s: %s", payload.chat_id, e)
            return JSONResponse(
                {"success": False, "error": "Could not load chat configuration"},
                status_code=500,
            )

        if webhook_url is None:
            logger.info("No webhook configured for chat %s", payload.chat_id)
            return JSONResponse({"success": True, "response": None})

        try:
            reply = await forwarder.forward_chat(webhook_url, payload)
        except Exception:
            logger.exception("Webhook proxy failed for chat %s", payload.chat_id)
            return JSONResponse(
                {"success": False, "error": "Unknown proxy error"}, status_code=500,
            )
        return JSONResponse(reply.to_json())

    @app.post("/api/webhook")
    async def webhook_relay(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict) or not body.get("webhook_url"):
            return JSONResponse({"error": "webhook_url is required"}, status_code=400)
        payload = dict(body)
        webhook_url = payload.pop("webhook_url")

        try:
            reply = await forwarder.relay(webhook_url, payload)
        except TimeoutError:
            logger.warning("Generic webhook relay to %s timed out", webhook_url)
            details = (
                f"{TIMEOUT_ERROR_PREFIX}: webhook did not respond within {forwarder.timeout:g}s"
            )
            return JSONResponse(
                {"error": "Internal server error", "details": details}, status_code=500,
            )
        except httpx.HTTPError as e:
            logger.warning("Generic webhook relay to %s failed: %s", webhook_url, e)
            return JSONResponse(
                {"error": "Internal server error", "details": str(e)}, status_code=500,
            )
        return JSONResponse(reply.to_json())

    @app.get("/api/image-proxy")
    async def image_proxy(url: str | None = None) -> Response:
        if not url:
            return Response("URL parameter is required", status_code=400)
        try:
            image = await forwarder.fetch_image(url)
        except (httpx.HTTPError, TimeoutError) as e:
            logger.warning("Image proxy failed for %s: %r", url, e)
            return Response("Internal Server Error", status_code=500)
        if image.status_code >= 400:
            return Response("Failed to fetch image", status_code=image.status_code)
        return Response(
            content=image.content,
            media_type=image.content_type,
            headers={"Cache-Control": "public, max-age=86400"},
        )

    app.include_router(create_form_router(db, form_service))
    app.include_router(create_admin_router(db, audit_logger))

    # Auth middleware wraps the whole app but only guards the admin prefix
    app.add_middleware(AuthMiddleware, token=token, audit_logger=audit_logger)

    return app


async def _json_body(request: Request) -> object:
    try:
        return await request.json()
    except json.JSONDecodeError:
        return None
