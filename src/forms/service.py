"""Form submission: validate, persist, then forward to the form's webhook."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from src.models import (
    AuditEvent,
    AuditEventType,
    FieldType,
    FormDefinition,
    FormResponse,
    RiskLevel,
)
from src.store.db import FormNotFoundError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.store.db import ChatDB
    from src.webhook.forwarder import WebhookForwarder
    from src.webhook.models import RelayReply

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_MESSAGE = "This field is required"
EMAIL_MESSAGE = "Enter a valid email address"
NUMBER_MESSAGE = "Enter a valid number"


class FormValidationError(Exception):
    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        super().__init__(f"Form validation failed for fields: {sorted(errors)}")


def validate_submission(form: FormDefinition, data: dict[str, Any]) -> dict[str, str]:
    """Return a field-id -> error message map; empty when the data is valid."""
    errors: dict[str, str] = {}
    for f in form.sorted_fields():
        value = data.get(f.id)
        if f.is_required and _is_blank(value):
            errors[f.id] = REQUIRED_MESSAGE
            continue
        if _is_blank(value):
            continue
        if f.field_type == FieldType.EMAIL and not _EMAIL_RE.match(str(value)):
            errors[f.id] = EMAIL_MESSAGE
        elif f.field_type == FieldType.NUMBER and not _is_number(value):
            errors[f.id] = NUMBER_MESSAGE
    return errors


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value is False


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value))
    except ValueError:
        return False
    return True


class FormService:
    def __init__(
        self,
        db: ChatDB,
        forwarder: WebhookForwarder,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._db = db
        self._forwarder = forwarder
        self._audit = audit_logger

    async def submit(
        self, form_id: str, user_email: str, data: dict[str, Any],
    ) -> FormResponse:
        """Validate and store a submission, then notify the form's webhook.

        Raises:
            FormNotFoundError: If the form does not exist or is unpublished.
            FormValidationError: If any field fails validation.
        """
        form = self._db.get_form(form_id)
        if form is None or not form.is_published:
            raise FormNotFoundError(form_id)

        errors = validate_submission(form, data)
        if errors:
            raise FormValidationError(errors)

        response = self._db.save_response(form_id, user_email, data)
        logger.info("Stored response %s for form %s", response.id, form_id)

        relay: RelayReply | None = None
        if form.webhook_url:
            relay = await self._forward(form, form.webhook_url, response)

        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.FORM_SUBMISSION,
                user_id=user_email,
                action="submit_form",
                result="success",
                risk_level=RiskLevel.INFO,
                details={
                    "form_id": form_id,
                    "response_id": response.id,
                    "webhook_status": relay.status if relay else None,
                },
            ))
        return response

    async def _forward(
        self, form: FormDefinition, webhook_url: str, response: FormResponse,
    ) -> RelayReply | None:
        payload = {
            "form_id": form.id,
            "form_title": form.title,
            "user_email": response.user_email,
            "response_data": response.values,
            "submitted_at": datetime.now(UTC).isoformat(),
        }
        try:
            reply = await self._forwarder.relay(webhook_url, payload)
        except (httpx.HTTPError, TimeoutError) as exc:
            # The response is already stored; webhook delivery is best-effort.
            logger.warning("Form %s webhook delivery failed: %r", form.id, exc)
            return None
        if not reply.success:
            logger.warning(
                "Form %s webhook responded with %s %s",
                form.id, reply.status, reply.status_text,
            )
        return reply
