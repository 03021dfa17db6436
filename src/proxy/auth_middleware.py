"""ASGI middleware guarding the admin API with a Bearer token."""

from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from src.audit.logger import AuditLogger
from src.models import AuditEvent, AuditEventType, RiskLevel

# Path prefixes that require a Bearer token
PROTECTED_PREFIXES = ("/api/admin",)


class AuthMiddleware:
    """Validates Bearer tokens on admin paths using constant-time comparison."""

    def __init__(
        self,
        app: ASGIApp,
        token: str,
        audit_logger: AuditLogger | None = None,
        protected_prefixes: tuple[str, ...] = PROTECTED_PREFIXES,
    ) -> None:
        self.app = app
        self._token = token.encode()
        self.audit_logger = audit_logger
        self._protected = protected_prefixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path
        if not path.startswith(self._protected):
            await self.app(scope, receive, send)
            return

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            response = JSONResponse({"error": "Authentication required"}, status_code=401)
            self._log(request, "failure", "missing_token" if not auth_header else "invalid_format")
            await response(scope, receive, send)
            return

        if not hmac.compare_digest(auth_header[7:].encode(), self._token):
            response = JSONResponse({"error": "Access denied"}, status_code=403)
            self._log(request, "failure", "invalid_token")
            await response(scope, receive, send)
            return

        self._log(request, "success")
        await self.app(scope, receive, send)

    def _log(self, request: Request, result: str, reason: str | None = None) -> None:
        if not self.audit_logger:
            return
        success = result == "success"
        self.audit_logger.log(AuditEvent(
            event_type=AuditEventType.AUTH_SUCCESS if success else AuditEventType.AUTH_FAILURE,
            source_ip=request.client.host if request.client else None,
            action=f"{request.method} {request.url.path}",
            result=result,
            risk_level=RiskLevel.INFO if success else RiskLevel.HIGH,
            details={"reason": reason} if reason else None,
        ))
