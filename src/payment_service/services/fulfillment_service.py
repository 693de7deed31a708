from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from payment_service.application.backoff import RetryPolicy, Sleep, run_with_policy
from payment_service.application.ports.fulfillment import FulfillmentGateway
from payment_service.domain.entities.order import Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FulfillmentResult:
    ok: bool
    response: dict[str, Any] | None = None
    error: str | None = None


async def dispatch_fulfillment(
    order: Order,
    gateway: FulfillmentGateway,
    *,
    session_id: str | None,
    payment_intent_id: str | None,
    correlation_id: str,
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
) -> FulfillmentResult:
    """Ask the collaborator to issue tickets for a freshly paid order.

    Never raises and never touches the order status: a paid order stays
    paid even when fulfillment is exhausted, and the failure is reported
    back for reconciliation.
    """
    session_id = session_id or order.stripe_session_id
    payment_intent_id = payment_intent_id or order.stripe_payment_intent_id

    async def _call() -> dict[str, Any]:
        return await gateway.process_payment(
            session_id=session_id,
            payment_intent_id=None if session_id else payment_intent_id,
            correlation_id=correlation_id,
        )

    try:
        response = await run_with_policy(
            _call, policy, operation_name=f"fulfillment-{order.id}", sleep=sleep,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "Fulfillment failed for paid order %s (session=%s, correlation=%s): %s",
            order.id, session_id, correlation_id, exc,
        )
        return FulfillmentResult(ok=False, error=str(exc) or type(exc).__name__)

    logger.info(
        "Fulfillment dispatched for order %s (tickets=%s)",
        order.id, (response.get("order") or {}).get("tickets_count"),
    )
    return FulfillmentResult(ok=True, response=response)
