from __future__ import annotations

import logging
from typing import Any

from payment_service.application.ports.fulfillment import FulfillmentGateway
from payment_service.application.uow import UnitOfWork
from payment_service.domain.entities.order import RefundResult
from payment_service.domain.entities.webhook_event import WebhookEvent
from payment_service.domain.value_objects.enums import RefundStatus

logger = logging.getLogger(__name__)

REFUND_REASON = "Stripe refund"


def refund_token_for(event: WebhookEvent) -> str:
    """Provider refund id, falling back to one derived from the event id."""
    latest = _latest_refund(event.object)
    if latest and latest.get("id"):
        return str(latest["id"])
    refund = event.object.get("refund")
    if isinstance(refund, dict) and refund.get("id"):
        return str(refund["id"])
    if isinstance(refund, str) and refund:
        return refund
    return f"refund_{event.id}"


def refund_amount_for(event: WebhookEvent) -> int:
    """This refund's amount, or the charge's running refund total when the
    refund list is not embedded.
    """
    latest = _latest_refund(event.object)
    if latest and latest.get("amount") is not None:
        return int(latest["amount"])
    return int(event.object.get("amount_refunded") or 0)


def _latest_refund(charge: dict[str, Any]) -> dict[str, Any] | None:
    refunds = (charge.get("refunds") or {}).get("data") or []
    if not refunds:
        return None
    return max(refunds, key=lambda r: r.get("created") or 0)


async def handle_refund(
    event: WebhookEvent,
    uow: UnitOfWork,
    gateway: FulfillmentGateway,
    *,
    correlation_id: str,
) -> RefundResult | None:
    """Apply refund accounting for a ``charge.refunded`` event.

    Returns None when the charge does not belong to a ticket order.
    """
    payment_intent_id = event.object.get("payment_intent")
    if isinstance(payment_intent_id, dict):
        payment_intent_id = payment_intent_id.get("id")
    if not payment_intent_id:
        logger.info("Refund event %s carries no payment intent, acknowledging", event.id)
        return None

    order = await uow.orders.find_by("stripe_payment_intent_id", str(payment_intent_id))
    if order is None:
        logger.info(
            "No ticket order for refunded payment intent %s (other purchase flow)",
            payment_intent_id,
        )
        return None

    token = refund_token_for(event)
    amount = refund_amount_for(event)
    # amount_refunded counts every refund on the charge so far.
    cumulative = _latest_refund(event.object) is None
    result = await uow.refunds.apply_refund(
        order.id, amount, token, REFUND_REASON,
        stripe_event_id=event.id, cumulative=cumulative,
    )

    if result.status == RefundStatus.ALREADY_PROCESSED:
        await uow.rollback()
        logger.info("Refund %s already applied to order %s", token, order.id)
        return result

    if result.status == RefundStatus.NO_REFUNDABLE_AMOUNT:
        await uow.rollback()
        logger.warning("Nothing left to refund on order %s (refund %s)", order.id, token)
        return result

    await uow.outbox.add(
        "payment.refund_applied",
        {
            "order_id": str(order.id),
            "refund_token": token,
            "amount_cents": result.amount_cents,
            "refunded_total_cents": result.refunded_total_cents,
        },
    )
    await uow.commit()
    logger.info(
        "Refund %s applied to order %s (%d cents, %d total)",
        token, order.id, result.amount_cents, result.refunded_total_cents,
    )

    try:
        await gateway.send_refund_confirmation(
            {
                "order_id": str(order.id),
                "email": order.contact_email,
                "refund_amount": result.amount_cents / 100,
                "reason": "Refund processed",
                "correlationId": correlation_id,
            }
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("Refund confirmation for order %s failed (non-critical): %s", order.id, exc)

    return result
