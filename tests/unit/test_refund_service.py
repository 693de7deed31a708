from __future__ import annotations

import pytest

from payment_service.domain.entities.webhook_event import WebhookEvent
from payment_service.domain.value_objects.enums import OrderStatus, RefundStatus, WebhookEventKind
from payment_service.services import refund_service
from tests.conftest import FakeFulfillment, make_order


def _charge_event(event_id: str = "evt_r1", **charge) -> WebhookEvent:
    obj = {"id": "ch_1", "payment_intent": "pi_test_1", "amount_refunded": 5000}
    obj.update(charge)
    return WebhookEvent(id=event_id, type="charge.refunded", kind=WebhookEventKind.CHARGE_REFUNDED, object=obj)


def test_refund_token_prefers_latest_refund_object():
    event = _charge_event(
        refunds={"data": [{"id": "re_old", "created": 1, "amount": 100}, {"id": "re_new", "created": 2, "amount": 200}]},
    )

    assert refund_service.refund_token_for(event) == "re_new"
    assert refund_service.refund_amount_for(event) == 200


def test_refund_token_falls_back_to_event_id():
    assert refund_service.refund_token_for(_charge_event("evt_9")) == "refund_evt_9"
    assert refund_service.refund_token_for(_charge_event(refund="re_flat")) == "re_flat"
    assert refund_service.refund_amount_for(_charge_event()) == 5000


@pytest.mark.asyncio
async def test_full_refund_marks_order_refunded(uow, store):
    order = store.add_order(make_order(status=OrderStatus.PAID))
    gateway = FakeFulfillment()

    result = await refund_service.handle_refund(_charge_event(), uow, gateway, correlation_id="c1")

    assert result.status == RefundStatus.APPLIED
    assert result.amount_cents == 5000
    assert store.orders[order.id].status == OrderStatus.REFUNDED
    assert store.orders[order.id].refunded_cents == 5000
    assert store.outbox[-1]["event_type"] == "payment.refund_applied"
    assert gateway.confirmations[0]["refund_amount"] == 50.0


@pytest.mark.asyncio
async def test_same_refund_token_applies_once(uow, store):
    order = store.add_order(make_order(status=OrderStatus.PAID, total_cents=10_000))
    gateway = FakeFulfillment()
    refunds = {"data": [{"id": "re_1", "created": 5, "amount": 3000}]}

    first = await refund_service.handle_refund(
        _charge_event("evt_a", refunds=refunds), uow, gateway, correlation_id="c1",
    )
    second = await refund_service.handle_refund(
        _charge_event("evt_b", refunds=refunds), uow, gateway, correlation_id="c2",
    )

    assert first.status == RefundStatus.APPLIED
    assert second.status == RefundStatus.ALREADY_PROCESSED
    assert store.orders[order.id].refunded_cents == 3000
    assert store.orders[order.id].status == OrderStatus.PAID
    assert len(store.refunds) == 1
    assert len(gateway.confirmations) == 1


@pytest.mark.asyncio
async def test_nothing_left_to_refund(uow, store):
    store.add_order(make_order(status=OrderStatus.REFUNDED, refunded_cents=5000))

    result = await refund_service.handle_refund(
        _charge_event(refund="re_extra"), uow, FakeFulfillment(), correlation_id="c1",
    )

    assert result.status == RefundStatus.NO_REFUNDABLE_AMOUNT
    assert store.refunds == {}


@pytest.mark.asyncio
async def test_charge_without_ticket_order_is_ignored(uow):
    result = await refund_service.handle_refund(
        _charge_event(payment_intent="pi_other"), uow, FakeFulfillment(), correlation_id="c1",
    )

    assert result is None


@pytest.mark.asyncio
async def test_confirmation_failure_does_not_undo_refund(uow, store):
    order = store.add_order(make_order(status=OrderStatus.PAID))

    class _Broken(FakeFulfillment):
        async def send_refund_confirmation(self, payload):
            raise RuntimeError("mailer down")

    result = await refund_service.handle_refund(_charge_event(), uow, _Broken(), correlation_id="c1")

    assert result.status == RefundStatus.APPLIED
    assert store.orders[order.id].refunded_cents == 5000


@pytest.mark.asyncio
async def test_partial_refunds_without_refund_list_apply_the_difference(uow, store):
    order = store.add_order(make_order(status=OrderStatus.PAID, total_cents=5000))
    gateway = FakeFulfillment()

    first = await refund_service.handle_refund(
        _charge_event("evt_p1", amount_refunded=1000), uow, gateway, correlation_id="c1",
    )
    second = await refund_service.handle_refund(
        _charge_event("evt_p2", amount_refunded=2000), uow, gateway, correlation_id="c2",
    )

    assert (first.amount_cents, second.amount_cents) == (1000, 1000)
    assert store.orders[order.id].refunded_cents == 2000
    assert store.orders[order.id].status == OrderStatus.PAID

    third = await refund_service.handle_refund(
        _charge_event("evt_p3", amount_refunded=5000), uow, gateway, correlation_id="c3",
    )
    assert third.amount_cents == 3000
    assert store.orders[order.id].status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_stale_running_total_applies_nothing(uow, store):
    order = store.add_order(make_order(status=OrderStatus.PAID, total_cents=5000, refunded_cents=2000))

    result = await refund_service.handle_refund(
        _charge_event("evt_old", amount_refunded=1500), uow, FakeFulfillment(), correlation_id="c1",
    )

    assert result.status == RefundStatus.NO_REFUNDABLE_AMOUNT
    assert store.orders[order.id].refunded_cents == 2000
