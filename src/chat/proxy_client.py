"""HTTP client for the webhook forwarding proxy endpoint."""

from __future__ import annotations

import logging

import httpx

from src.webhook.models import ChatWebhookPayload, ProxyReply

logger = logging.getLogger(__name__)

PROXY_PATH = "/api/webhook-proxy"


class ProxyStatusError(Exception):
    """The proxy itself answered with a non-200 status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Webhook proxy responded with HTTP {status_code}")


class ProxyClient:
    """Posts chat messages to the proxy and decodes its envelope."""

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport

    async def forward(self, payload: ChatWebhookPayload) -> ProxyReply:
        """Send one message through the proxy.

        Raises:
            ProxyStatusError: On any status other than 200.
            httpx.HTTPError: On transport failure.
        """
        # The caller enforces the overall deadline.
        async with httpx.AsyncClient(
            base_url=self._base_url, transport=self._transport, timeout=None,
        ) as client:
            resp = await client.post(PROXY_PATH, json=payload.to_json())

        if resp.status_code != 200:
            logger.warning("Proxy responded with %s for chat %s", resp.status_code, payload.chat_id)
            raise ProxyStatusError(resp.status_code, resp.text)
        return ProxyReply.from_json(resp.json())
