"""Inbound payment-provider notifications.

Nothing in a payload is trusted until its signature has been verified.
Verified events are classified by ``type`` and routed to the order
transition, refund accounting, or acknowledged without a state change.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from payment_service.application.backoff import RetryPolicy, Sleep
from payment_service.application.exceptions import NotFoundError, ValidationError
from payment_service.application.ports.clock import Clock, SystemClock
from payment_service.application.ports.fulfillment import FulfillmentGateway
from payment_service.application.ports.webhooks import WebhookVerifier
from payment_service.application.uow import UnitOfWork
from payment_service.domain.entities.order import OrderLookup
from payment_service.domain.entities.webhook_event import WebhookAck, WebhookEvent
from payment_service.domain.value_objects.enums import (
    OrderStatus,
    QueueKindName,
    TransitionOutcome,
    WebhookEventKind,
)
from payment_service.services import order_service, queue_service, refund_service
from payment_service.services.fulfillment_service import FulfillmentResult, dispatch_fulfillment

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
FULFILLMENT_STAGE = "fulfillment"

# Checkout sessions for wallet credit and invoices are settled by another consumer.
_FOREIGN_FLOW_KEYS = ("org_wallet_id", "wallet_id", "invoice_id")

_KNOWN_KINDS = {k.value: k for k in WebhookEventKind if k != WebhookEventKind.UNHANDLED}


@dataclass(frozen=True)
class WebhookContext:
    verifier: WebhookVerifier
    fulfillment: FulfillmentGateway
    fulfillment_policy: RetryPolicy = field(default_factory=RetryPolicy)
    retry_max_attempts: int = 5
    retry_initial_delay_ms: int = 60_000
    clock: Clock = field(default_factory=SystemClock)
    sleep: Sleep = asyncio.sleep


@dataclass(frozen=True, slots=True)
class EventOutcome:
    ack: WebhookAck
    order_id: UUID | None = None
    fulfillment: FulfillmentResult | None = None

    @property
    def fulfillment_failed(self) -> bool:
        return self.fulfillment is not None and not self.fulfillment.ok


def classify_event(envelope: dict[str, Any]) -> WebhookEvent:
    event_id = envelope.get("id")
    event_type = envelope.get("type")
    data = envelope.get("data")
    if not isinstance(event_id, str) or not isinstance(event_type, str):
        raise ValidationError("Webhook payload is missing id or type")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise ValidationError("Webhook payload is missing data.object")

    return WebhookEvent(
        id=event_id,
        type=event_type,
        kind=_KNOWN_KINDS.get(event_type, WebhookEventKind.UNHANDLED),
        object=data["object"],
        livemode=bool(envelope.get("livemode", False)),
        created=envelope.get("created"),
    )


def verify_and_classify(
    raw_body: bytes | str,
    signature: str | None,
    verifier: WebhookVerifier,
    *,
    check_timestamp: bool = True,
) -> WebhookEvent:
    envelope = verifier.verify(raw_body, signature, check_timestamp=check_timestamp)
    return classify_event(envelope)


def payment_lookups(event: WebhookEvent) -> list[OrderLookup]:
    """Correlation fields for a payment event, most reliable first."""
    obj = event.object
    metadata = event.metadata
    candidates: list[tuple[str, Any]]
    if event.kind == WebhookEventKind.CHECKOUT_COMPLETED:
        candidates = [
            ("stripe_session_id", obj.get("id")),
            ("checkout_session_id", metadata.get("checkout_session_id")),
            ("stripe_payment_intent_id", obj.get("payment_intent")),
        ]
    elif event.kind == WebhookEventKind.PAYMENT_SUCCEEDED:
        candidates = [
            ("checkout_session_id", metadata.get("checkout_session_id")),
            ("stripe_payment_intent_id", obj.get("id")),
        ]
    else:
        candidates = []
    return [OrderLookup(name, str(value)) for name, value in candidates if isinstance(value, str) and value]


async def handle_webhook(
    raw_body: bytes | str,
    signature: str | None,
    ctx: WebhookContext,
    uow: UnitOfWork,
) -> WebhookAck:
    """Verify, record and process one delivery.

    Raises ``AuthenticationError`` before touching the store when the
    signature is bad. Any error before the financial transition propagates
    so the provider redelivers.
    """
    event = verify_and_classify(raw_body, signature, ctx.verifier)
    correlation_id = uuid.uuid4().hex
    started = time.monotonic()
    logger.info(
        "Webhook event verified: id=%s type=%s correlation=%s",
        event.id, event.type, correlation_id,
    )

    record, created = await uow.webhook_events.begin(
        event.id, event.type, correlation_id, ctx.clock.now(),
    )
    if not created and record.success:
        logger.info("Webhook event %s already processed", event.id)
        return WebhookAck(event_id=event.id, already_processed=True)
    await uow.commit()

    try:
        outcome = await process_event(event, ctx, uow, correlation_id=correlation_id)
    except NotFoundError as exc:
        await uow.rollback()
        logger.warning("Webhook event %s: %s", event.id, exc.detail)
        await uow.webhook_events.mark_failed(event.id, exc.detail)
        await uow.commit()
        return WebhookAck(event_id=event.id, outcome="order_not_found")
    except Exception as exc:
        await uow.rollback()
        await _record_failure(event, exc, uow)
        raise

    ack = outcome.ack
    if outcome.fulfillment_failed:
        ack = await _enqueue_fulfillment_retry(
            event, raw_body, signature, outcome, ctx, uow, correlation_id=correlation_id,
        )

    duration_ms = int((time.monotonic() - started) * 1000)
    await uow.webhook_events.mark_succeeded(event.id, outcome.order_id, duration_ms)
    await uow.commit()
    logger.info("Webhook event %s processed in %dms", event.id, duration_ms)
    return ack


async def process_event(
    event: WebhookEvent,
    ctx: WebhookContext,
    uow: UnitOfWork,
    *,
    correlation_id: str,
    resume_fulfillment: bool = False,
) -> EventOutcome:
    if event.kind in (WebhookEventKind.CHECKOUT_COMPLETED, WebhookEventKind.PAYMENT_SUCCEEDED):
        return await _handle_payment(
            event, ctx, uow,
            correlation_id=correlation_id, resume_fulfillment=resume_fulfillment,
        )

    if event.kind == WebhookEventKind.CHARGE_REFUNDED:
        result = await refund_service.handle_refund(
            event, uow, ctx.fulfillment, correlation_id=correlation_id,
        )
        if result is None:
            return EventOutcome(ack=WebhookAck(event_id=event.id, skipped="no_ticket_order"))
        return EventOutcome(
            ack=WebhookAck(event_id=event.id, outcome=result.status.value),
            order_id=result.order_id,
        )

    logger.info("Unhandled webhook event type %s (%s)", event.type, event.id)
    return EventOutcome(ack=WebhookAck(event_id=event.id, outcome="unhandled"))


async def _handle_payment(
    event: WebhookEvent,
    ctx: WebhookContext,
    uow: UnitOfWork,
    *,
    correlation_id: str,
    resume_fulfillment: bool,
) -> EventOutcome:
    if event.kind == WebhookEventKind.CHECKOUT_COMPLETED and any(
        event.metadata.get(key) for key in _FOREIGN_FLOW_KEYS
    ):
        logger.info("Skipping wallet purchase session %s", event.object.get("id"))
        return EventOutcome(ack=WebhookAck(event_id=event.id, skipped="wallet_purchase"))

    lookups = payment_lookups(event)
    if not lookups:
        logger.info("No correlation field on %s event %s, skipping", event.type, event.id)
        return EventOutcome(ack=WebhookAck(event_id=event.id, skipped="no_session_id"))

    order, transition = await order_service.mark_order_paid(lookups, uow, clock=ctx.clock)
    resuming = resume_fulfillment and order.status == OrderStatus.PAID
    if transition != TransitionOutcome.TRANSITIONED and not resuming:
        return EventOutcome(
            ack=WebhookAck(event_id=event.id, outcome=transition.value),
            order_id=order.id,
        )

    is_checkout = event.kind == WebhookEventKind.CHECKOUT_COMPLETED
    result = await dispatch_fulfillment(
        order,
        ctx.fulfillment,
        session_id=event.object.get("id") if is_checkout else None,
        payment_intent_id=None if is_checkout else event.object.get("id"),
        correlation_id=correlation_id,
        policy=ctx.fulfillment_policy,
        sleep=ctx.sleep,
    )
    return EventOutcome(
        ack=WebhookAck(
            event_id=event.id,
            outcome=TransitionOutcome.TRANSITIONED.value if not resuming else "fulfillment_resumed",
            extra={"fulfillment": "dispatched" if result.ok else "failed"},
        ),
        order_id=order.id,
        fulfillment=result,
    )


async def _enqueue_fulfillment_retry(
    event: WebhookEvent,
    raw_body: bytes | str,
    signature: str | None,
    outcome: EventOutcome,
    ctx: WebhookContext,
    uow: UnitOfWork,
    *,
    correlation_id: str,
) -> WebhookAck:
    body = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
    error = outcome.fulfillment.error if outcome.fulfillment else None
    try:
        item = await queue_service.enqueue(
            QueueKindName.WEBHOOK_RETRY,
            {
                "webhook_type": "stripe",
                "event_id": event.id,
                "event_type": event.type,
                "body": body,
                "headers": {SIGNATURE_HEADER: signature or "", "content-type": "application/json"},
            },
            uow,
            max_attempts=ctx.retry_max_attempts,
            initial_delay_ms=ctx.retry_initial_delay_ms,
            metadata={
                "stage": FULFILLMENT_STAGE,
                "order_id": str(outcome.order_id) if outcome.order_id else None,
                "correlation_id": correlation_id,
                "original_error": error,
            },
            clock=ctx.clock,
        )
    except Exception:  # noqa: BLE001
        await uow.rollback()
        logger.exception(
            "Could not enqueue fulfillment retry for order %s (event %s); needs manual reconciliation",
            outcome.order_id, event.id,
        )
        return WebhookAck(
            event_id=event.id,
            outcome=outcome.ack.outcome,
            extra={"fulfillment": "failed"},
        )

    logger.warning(
        "Fulfillment for order %s queued for retry as %s", outcome.order_id, item.id,
    )
    return WebhookAck(
        event_id=event.id,
        outcome=outcome.ack.outcome,
        extra={"fulfillment": "queued", "retry_id": str(item.id)},
    )


async def _record_failure(event: WebhookEvent, exc: Exception, uow: UnitOfWork) -> None:
    try:
        await uow.webhook_events.mark_failed(event.id, str(exc) or type(exc).__name__)
        await uow.commit()
    except Exception:  # noqa: BLE001
        logger.exception("Could not record failure of webhook event %s", event.id)
