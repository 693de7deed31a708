from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from payment_service.application.exceptions import NotFoundError, ValidationError
from payment_service.domain.entities.order import Order, RefundResult
from payment_service.domain.value_objects.enums import OrderStatus, RefundStatus
from payment_service.infrastructure.db.mappers.order import model_to_entity
from payment_service.infrastructure.db.models.order import OrderModel, RefundModel

_LOOKUP_COLUMNS = {
    "stripe_session_id": OrderModel.stripe_session_id,
    "stripe_payment_intent_id": OrderModel.stripe_payment_intent_id,
    "checkout_session_id": OrderModel.checkout_session_id,
}


class OrderReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, order_id: UUID) -> Order | None:
        stmt = select(OrderModel).where(OrderModel.id == order_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return model_to_entity(model) if model else None

    async def find_by(self, field: str, value: str) -> Order | None:
        column = _LOOKUP_COLUMNS.get(field)
        if column is None:
            raise ValidationError(f"Orders cannot be looked up by {field}")
        stmt = (
            select(OrderModel)
            .where(column == value)
            .order_by(OrderModel.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return model_to_entity(model) if model else None


class OrderWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def mark_paid_if_pending(self, order_id: UUID, paid_at: datetime) -> bool:
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == OrderStatus.PENDING.value,
            )
            .values(status=OrderStatus.PAID.value, paid_at=paid_at, updated_at=paid_at)
            .returning(OrderModel.id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None


class RefundWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def apply_refund(
        self,
        order_id: UUID,
        amount_cents: int,
        refund_token: str,
        reason: str,
        stripe_event_id: str | None = None,
        cumulative: bool = False,
    ) -> RefundResult:
        # Row lock serialises concurrent refunds for the same order.
        locked = await self._session.execute(
            select(OrderModel).where(OrderModel.id == order_id).with_for_update()
        )
        order = locked.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        seen = await self._session.execute(
            select(RefundModel.id).where(RefundModel.refund_token == refund_token)
        )
        if seen.scalar_one_or_none() is not None:
            return RefundResult(
                status=RefundStatus.ALREADY_PROCESSED,
                order_id=order_id,
                refund_token=refund_token,
                refunded_total_cents=order.refunded_cents,
            )

        refundable = max(order.total_cents - order.refunded_cents, 0)
        if refundable <= 0:
            return RefundResult(
                status=RefundStatus.NO_REFUNDABLE_AMOUNT,
                order_id=order_id,
                refund_token=refund_token,
                refunded_total_cents=order.refunded_cents,
            )

        if cumulative and amount_cents > 0:
            amount_cents -= order.refunded_cents
            if amount_cents <= 0:
                return RefundResult(
                    status=RefundStatus.NO_REFUNDABLE_AMOUNT,
                    order_id=order_id,
                    refund_token=refund_token,
                    refunded_total_cents=order.refunded_cents,
                )

        amount = min(amount_cents, refundable) if amount_cents > 0 else refundable
        inserted = await self._session.execute(
            pg_insert(RefundModel)
            .values(
                order_id=order_id,
                refund_token=refund_token,
                amount_cents=amount,
                reason=reason,
                stripe_event_id=stripe_event_id,
            )
            .on_conflict_do_nothing(index_elements=[RefundModel.refund_token])
            .returning(RefundModel.id)
        )
        if inserted.scalar_one_or_none() is None:
            return RefundResult(
                status=RefundStatus.ALREADY_PROCESSED,
                order_id=order_id,
                refund_token=refund_token,
                refunded_total_cents=order.refunded_cents,
            )

        refunded_total = order.refunded_cents + amount
        status = OrderStatus.REFUNDED.value if refunded_total >= order.total_cents else order.status
        await self._session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(refunded_cents=refunded_total, status=status)
        )
        await self._session.flush()
        return RefundResult(
            status=RefundStatus.APPLIED,
            order_id=order_id,
            refund_token=refund_token,
            amount_cents=amount,
            refunded_total_cents=refunded_total,
        )
