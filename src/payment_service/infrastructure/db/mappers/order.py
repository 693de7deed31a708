from __future__ import annotations

from payment_service.domain.entities.order import Order
from payment_service.infrastructure.db.models.order import OrderModel


def model_to_entity(model: OrderModel) -> Order:
    return Order(
        id=model.id,
        status=model.status,
        paid_at=model.paid_at,
        stripe_session_id=model.stripe_session_id,
        stripe_payment_intent_id=model.stripe_payment_intent_id,
        checkout_session_id=model.checkout_session_id,
        total_cents=model.total_cents,
        refunded_cents=model.refunded_cents,
        contact_email=model.contact_email,
        created_at=model.created_at,
    )
