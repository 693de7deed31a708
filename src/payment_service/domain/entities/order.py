from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from payment_service.domain.value_objects.enums import OrderStatus


@dataclass(frozen=True, slots=True)
class Order:
    id: UUID
    status: str
    paid_at: datetime | None
    stripe_session_id: str | None
    stripe_payment_intent_id: str | None
    checkout_session_id: str | None
    total_cents: int
    refunded_cents: int
    contact_email: str | None
    created_at: datetime

    @property
    def is_settled(self) -> bool:
        """Paid or refunded orders never go back to ``pending``."""
        return self.status in (OrderStatus.PAID, OrderStatus.REFUNDED)

    @property
    def refundable_cents(self) -> int:
        return max(self.total_cents - self.refunded_cents, 0)


@dataclass(frozen=True, slots=True)
class OrderLookup:
    """One correlation field to try when resolving an order."""

    field: str
    value: str


@dataclass(frozen=True, slots=True)
class RefundResult:
    status: str
    order_id: UUID
    refund_token: str
    amount_cents: int = 0
    refunded_total_cents: int = 0
