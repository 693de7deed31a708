from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from payment_service.domain.entities.order import Order, RefundResult


class OrderReader(Protocol):
    async def get_by_id(self, order_id: UUID) -> Order | None: ...

    async def find_by(self, field: str, value: str) -> Order | None:
        """Look up by one of the provider correlation columns."""
        ...


class OrderWriter(Protocol):
    async def mark_paid_if_pending(self, order_id: UUID, paid_at: datetime) -> bool:
        """Set ``paid`` only while the row still reads ``pending``.

        Returns False when zero rows were affected.
        """
        ...


class RefundWriter(Protocol):
    async def apply_refund(
        self,
        order_id: UUID,
        amount_cents: int,
        refund_token: str,
        reason: str,
        stripe_event_id: str | None = None,
        cumulative: bool = False,
    ) -> RefundResult:
        """Atomically record a refund, keyed on ``refund_token``.

        With ``cumulative`` the amount is the charge's refunded total and only
        the part not yet applied to the order is recorded.
        """
        ...
