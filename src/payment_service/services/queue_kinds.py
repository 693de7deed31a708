"""Email and webhook-retry plugins for the generic queue engine."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

from payment_service.application.backoff import RetryPolicy
from payment_service.application.exceptions import (
    NotFoundError,
    PermanentError,
    TransientError,
    ValidationError,
)
from payment_service.application.ports.email import EmailSender
from payment_service.application.uow import UoWFactory
from payment_service.domain.entities.queue_item import QueueItem
from payment_service.domain.entities.rate_limit import RateLimitRule
from payment_service.domain.value_objects.enums import QueueKindName, QueueStatus
from payment_service.services import webhook_service
from payment_service.services.queue_service import QueueKind

logger = logging.getLogger(__name__)


class EmailPayload(BaseModel):
    to_email: EmailStr
    subject: str = Field(min_length=1)
    html: str
    from_email: str | None = None
    reply_to: str | None = None
    email_type: str | None = None


class WebhookRetryPayload(BaseModel):
    webhook_type: str = "stripe"
    event_id: str | None = None
    event_type: str | None = None
    body: str
    headers: dict[str, str] = Field(default_factory=dict)


def _validate(model: type[BaseModel], payload: dict[str, Any]) -> dict[str, Any]:
    try:
        return model.model_validate(payload).model_dump()
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {model.__name__}: {exc.errors()}") from exc


def build_email_kind(
    sender: EmailSender,
    *,
    default_from: str,
    default_reply_to: str,
    global_limit: int,
    recipient_limit: int,
    window_seconds: int,
    max_attempts: int,
    retry_schedule: tuple[float, ...],
    send_policy: RetryPolicy,
    processing_timeout_seconds: int = 600,
    batch_size: int = 50,
) -> QueueKind:
    def rules(item: QueueItem) -> list[RateLimitRule]:
        recipient = str(item.payload.get("to_email", "")).lower()
        return [
            RateLimitRule("email:global", global_limit, window_seconds),
            RateLimitRule(f"email:recipient:{recipient}", recipient_limit, window_seconds),
        ]

    async def send(item: QueueItem) -> Any:
        payload = item.payload
        response = await sender.send(
            {
                "from": payload.get("from_email") or default_from,
                "to": [payload["to_email"]],
                "subject": payload["subject"],
                "html": payload["html"],
                "reply_to": payload.get("reply_to") or default_reply_to,
            }
        )
        logger.info(
            "Email %s sent to %s (type=%s)",
            item.id, payload["to_email"], payload.get("email_type"),
        )
        return response

    return QueueKind(
        name=QueueKindName.EMAIL,
        terminal_status=QueueStatus.SENT,
        default_max_attempts=max_attempts,
        retry_schedule=retry_schedule,
        send=send,
        rate_limit_rules=rules,
        validate_payload=lambda payload: _validate(EmailPayload, payload),
        send_policy=send_policy,
        processing_timeout_seconds=processing_timeout_seconds,
        batch_size=batch_size,
    )


def build_webhook_retry_kind(
    ctx: webhook_service.WebhookContext,
    uow_factory: UoWFactory,
    *,
    rate_limit: int,
    window_seconds: int,
    max_attempts: int,
    retry_schedule: tuple[float, ...],
    processing_timeout_seconds: int = 600,
    batch_size: int = 10,
) -> QueueKind:
    def rules(_item: QueueItem) -> list[RateLimitRule]:
        return [RateLimitRule("webhook_retry:global", rate_limit, window_seconds)]

    async def send(item: QueueItem) -> None:
        payload = item.payload
        if payload.get("webhook_type") != "stripe":
            raise PermanentError(f"Unknown webhook type: {payload.get('webhook_type')}")

        headers = {k.lower(): v for k, v in (payload.get("headers") or {}).items()}
        # Stored bodies outlive the signature tolerance window.
        event = webhook_service.verify_and_classify(
            payload["body"],
            headers.get(webhook_service.SIGNATURE_HEADER),
            ctx.verifier,
            check_timestamp=False,
        )
        correlation_id = item.metadata.get("correlation_id") or uuid.uuid4().hex
        resume = item.metadata.get("stage") == webhook_service.FULFILLMENT_STAGE

        async with uow_factory() as uow:
            try:
                outcome = await webhook_service.process_event(
                    event, ctx, uow,
                    correlation_id=correlation_id, resume_fulfillment=resume,
                )
            except NotFoundError as exc:
                await uow.rollback()
                logger.warning("Replayed event %s has no order, dropping: %s", event.id, exc.detail)
                return

        if outcome.fulfillment_failed:
            raise TransientError(
                outcome.fulfillment.error if outcome.fulfillment else "fulfillment failed"
            )
        logger.info("Replayed webhook event %s (%s): %s", event.id, event.type, outcome.ack.outcome)

    return QueueKind(
        name=QueueKindName.WEBHOOK_RETRY,
        terminal_status=QueueStatus.PROCESSED,
        default_max_attempts=max_attempts,
        retry_schedule=retry_schedule,
        send=send,
        rate_limit_rules=rules,
        validate_payload=lambda payload: _validate(WebhookRetryPayload, payload),
        processing_timeout_seconds=processing_timeout_seconds,
        batch_size=batch_size,
    )


class QueueRegistry:
    """Kinds known to this process, addressed by name."""

    def __init__(self, *kinds: QueueKind) -> None:
        self._kinds = {str(kind.name): kind for kind in kinds}

    def get(self, name: str) -> QueueKind:
        kind = self._kinds.get(name)
        if kind is None:
            raise NotFoundError(f"Unknown queue kind: {name}")
        return kind

    def __iter__(self):
        return iter(self._kinds.values())
