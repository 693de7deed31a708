from __future__ import annotations

import uuid

import pytest

from payment_service.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from payment_service.infrastructure.bus.serializer import deserialize_event
from payment_service.workers.outbox_worker import process_batch
from tests.conftest import make_uow_factory


class _Publisher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, payload))


@pytest.mark.asyncio
async def test_pending_records_are_published(uow, store, clock):
    await uow.outbox.add("payment.order_paid", {"order_id": "o-1"})
    publisher = _Publisher()

    sent = await process_batch(publisher, make_uow_factory(store), channel="payments.test", clock=clock)

    assert sent == 1
    assert publisher.published == [("payments.test", {"event_type": "payment.order_paid", "order_id": "o-1"})]
    assert store.outbox[0]["status"] == "sent"
    assert store.outbox[0]["published_at"] == clock.now()


@pytest.mark.asyncio
async def test_publish_failure_backs_off_then_goes_dead(uow, store, clock):
    await uow.outbox.add("payment.refund_applied", {"order_id": "o-2"})
    publisher = _Publisher(fail=True)
    factory = make_uow_factory(store)

    await process_batch(publisher, factory, max_attempts=2, clock=clock)
    assert store.outbox[0]["status"] == "failed"
    assert store.outbox[0]["last_error"] == "redis down"

    await process_batch(publisher, factory, max_attempts=2, clock=clock)
    assert store.outbox[0]["status"] == "dead"
    assert store.outbox[0]["attempts"] == 2
    assert await process_batch(publisher, factory, max_attempts=2, clock=clock) == 0


class _FakeRedis:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.messages.append((channel, message))
        return 1


@pytest.mark.asyncio
async def test_redis_publisher_wraps_payload_in_envelope():
    redis = _FakeRedis()
    order_id = uuid.uuid4()

    await RedisPubSubPublisher(redis).publish(
        "payments.events", {"event_type": "payment.order_paid", "order_id": order_id},
    )

    ((channel, raw),) = redis.messages
    event_type, data = deserialize_event(raw)
    assert channel == "payments.events"
    assert event_type == "payment.order_paid"
    assert data["order_id"] == str(order_id)
