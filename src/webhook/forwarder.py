"""Server-side webhook forwarding.

Performs the outbound calls the browser-facing client cannot make itself:
- chat messages to a chat's configured webhook (60s timeout by default)
- arbitrary payloads to a caller-supplied webhook (form submissions)
- image downloads for the image proxy
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.models import (
    TIMEOUT_ERROR_PREFIX,
    ChatWebhookPayload,
    ProxyReply,
    RelayReply,
)

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
USER_AGENT = "chatrelay-proxy/1.0"


@dataclass
class FetchedImage:
    status_code: int
    content: bytes
    content_type: str


class WebhookForwarder:
    """Issues outbound webhook requests with httpx."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._audit = audit_logger

    @property
    def timeout(self) -> float:
        return self._timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, follow_redirects=True)

    async def forward_chat(
        self, webhook_url: str, payload: ChatWebhookPayload,
    ) -> ProxyReply:
        """POST a chat message to its webhook and wrap the outcome.

        The whole exchange, body included, is bounded by the forwarder's
        timeout. Never raises for webhook-side problems: timeouts, connection
        errors and error statuses all become ``ProxyReply(success=False)``.
        """
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        logger.info("Forwarding chat %s message to webhook", payload.chat_id)
        try:
            async with asyncio.timeout(self._timeout), self._client() as client:
                resp = await client.post(
                    webhook_url,
                    json=payload.to_json(),
                    headers=headers,
                    timeout=self._timeout,
                )
        except (TimeoutError, httpx.TimeoutException):
            logger.warning("Webhook for chat %s timed out", payload.chat_id)
            reply = ProxyReply(
                success=False,
                error=(
                    f"{TIMEOUT_ERROR_PREFIX}: webhook did not respond "
                    f"within {self._timeout:g}s"
                ),
            )
            self._log_relay(payload, reply, AuditEventType.WEBHOOK_TIMEOUT)
            return reply
        except httpx.HTTPError as exc:
            logger.warning("Webhook for chat %s failed: %s", payload.chat_id, exc)
            reply = ProxyReply(success=False, error=f"webhook request failed: {exc}")
            self._log_relay(payload, reply)
            return reply

        if not resp.is_success:
            logger.warning(
                "Webhook for chat %s responded with status %s",
                payload.chat_id, resp.status_code,
            )
            reply = ProxyReply(
                success=False,
                error=f"webhook responded with status {resp.status_code}",
                status=resp.status_code,
            )
        else:
            reply = ProxyReply(success=True, response=_parse_body(resp.text))

        self._log_relay(payload, reply)
        return reply

    async def relay(self, webhook_url: str, payload: dict[str, Any]) -> RelayReply:
        """POST an arbitrary payload and report the raw outcome.

        Raises:
            TimeoutError: If the exchange exceeds the forwarder's timeout.
            httpx.HTTPError: On transport failure.
        """
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        async with asyncio.timeout(self._timeout), self._client() as client:
            resp = await client.post(
                webhook_url, json=payload, headers=headers, timeout=self._timeout,
            )
        logger.info("Relayed payload to webhook, status %s", resp.status_code)
        return RelayReply(
            success=resp.is_success,
            status=resp.status_code,
            status_text=resp.reason_phrase,
            response=resp.text,
        )

    async def fetch_image(self, url: str) -> FetchedImage:
        async with asyncio.timeout(self._timeout), self._client() as client:
            resp = await client.get(url, timeout=self._timeout)
        return FetchedImage(
            status_code=resp.status_code,
            content=resp.content,
            content_type=resp.headers.get("content-type", "image/jpeg"),
        )

    def _log_relay(
        self,
        payload: ChatWebhookPayload,
        reply: ProxyReply,
        event_type: AuditEventType = AuditEventType.WEBHOOK_RELAY,
    ) -> None:
        if not self._audit:
            return
        details: dict[str, object] = {"chat_id": payload.chat_id}
        if reply.status is not None:
            details["webhook_status"] = reply.status
        if reply.error:
            details["error"] = reply.error
        self._audit.log(AuditEvent(
            event_type=event_type,
            user_id=payload.user_id,
            action="forward_chat",
            result="success" if reply.success else "failure",
            risk_level=RiskLevel.INFO if reply.success else RiskLevel.LOW,
            details=details,
        ))


def _parse_body(text: str) -> Any:
    """Parse a webhook body as JSON, falling back to raw text. Empty -> None."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text
