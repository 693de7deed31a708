from __future__ import annotations

import logging
from typing import Sequence

from payment_service.application.exceptions import NotFoundError
from payment_service.application.ports.clock import Clock, SystemClock
from payment_service.application.uow import UnitOfWork
from payment_service.domain.entities.order import Order, OrderLookup
from payment_service.domain.value_objects.enums import TransitionOutcome

logger = logging.getLogger(__name__)


async def resolve_order(lookups: Sequence[OrderLookup], uow: UnitOfWork) -> Order:
    """Try each correlation field in order until one matches."""
    for lookup in lookups:
        order = await uow.orders.find_by(lookup.field, lookup.value)
        if order is not None:
            return order
        logger.debug("No order for %s=%s, trying next lookup", lookup.field, lookup.value)

    tried = ", ".join(f"{lk.field}={lk.value}" for lk in lookups) or "no correlation fields"
    raise NotFoundError(f"Order not found for {tried}")


async def mark_order_paid(
    lookups: Sequence[OrderLookup],
    uow: UnitOfWork,
    *,
    clock: Clock | None = None,
) -> tuple[Order, TransitionOutcome]:
    """Apply ``pending -> paid`` at most once per order.

    Duplicate deliveries see the settled status and exit as a no-op; a
    concurrent delivery that loses the conditional update does the same.
    Only the ``TRANSITIONED`` caller may dispatch fulfillment.
    """
    clock = clock or SystemClock()
    order = await resolve_order(lookups, uow)

    if order.is_settled:
        logger.info("Order %s already %s, skipping", order.id, order.status)
        return order, TransitionOutcome.ALREADY_HANDLED

    paid_at = clock.now()
    won = await uow.orders_w.mark_paid_if_pending(order.id, paid_at)
    if not won:
        await uow.rollback()
        logger.info("Order %s was transitioned by a concurrent delivery", order.id)
        return order, TransitionOutcome.LOST_RACE

    await uow.outbox.add(
        "payment.order_paid",
        {
            "order_id": str(order.id),
            "paid_at": paid_at.isoformat(),
            "stripe_session_id": order.stripe_session_id,
        },
    )
    await uow.commit()

    paid = await uow.orders.get_by_id(order.id)
    logger.info("Order %s marked paid at %s", order.id, paid_at.isoformat())
    return paid or order, TransitionOutcome.TRANSITIONED
