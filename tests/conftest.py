"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import pytest

from payment_service.application.exceptions import NotFoundError, TransientError
from payment_service.application.repositories.outbox import OutboxRecord
from payment_service.application.repositories.webhook_event import WebhookEventRecord
from payment_service.domain.entities.order import Order, RefundResult
from payment_service.domain.entities.queue_item import QueueItem
from payment_service.domain.entities.rate_limit import RateLimitCounter
from payment_service.domain.value_objects.enums import (
    OrderStatus,
    QueueKindName,
    QueueStatus,
    RefundStatus,
)

WEBHOOK_SECRET = "whsec_test_secret"

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


async def no_sleep(_delay: float) -> None:
    return None


def make_order(
    *,
    status: str = OrderStatus.PENDING,
    session_id: str | None = "cs_test_1",
    payment_intent_id: str | None = "pi_test_1",
    checkout_session_id: str | None = None,
    total_cents: int = 5000,
    refunded_cents: int = 0,
) -> Order:
    return Order(
        id=uuid.uuid4(),
        status=status,
        paid_at=T0 if status != OrderStatus.PENDING else None,
        stripe_session_id=session_id,
        stripe_payment_intent_id=payment_intent_id,
        checkout_session_id=checkout_session_id,
        total_cents=total_cents,
        refunded_cents=refunded_cents,
        contact_email="buyer@example.com",
        created_at=T0,
    )


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way the provider does."""
    ts = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def make_event(
    event_type: str = "checkout.session.completed",
    obj: dict[str, Any] | None = None,
    *,
    event_id: str | None = None,
) -> str:
    if obj is None:
        obj = {"id": "cs_test_1", "payment_intent": "pi_test_1", "metadata": {}}
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
            "type": event_type,
            "livemode": False,
            "created": 1772366400,
            "data": {"object": obj},
        }
    )


# ---- in-memory store ---------------------------------------------------------


@dataclass
class FakeStore:
    """State shared by every FakeUoW opened from one factory.

    Reads yield to the event loop so concurrent callers interleave between
    read and conditional write, the way separate sessions would.
    """

    orders: dict[UUID, Order] = field(default_factory=dict)
    refunds: dict[str, dict[str, Any]] = field(default_factory=dict)
    counters: dict[str, RateLimitCounter] = field(default_factory=dict)
    events: dict[str, WebhookEventRecord] = field(default_factory=dict)
    queues: dict[str, dict[UUID, QueueItem]] = field(default_factory=dict)
    outbox: list[dict[str, Any]] = field(default_factory=list)
    lookups: list[tuple[str, str]] = field(default_factory=list)
    paid_writes: int = 0

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    def items(self, kind: str) -> list[QueueItem]:
        return list(self.queues.get(kind, {}).values())


@dataclass
class FakeOrderReader:
    _store: FakeStore

    async def get_by_id(self, order_id: UUID) -> Order | None:
        order = self._store.orders.get(order_id)
        await asyncio.sleep(0)
        return order

    async def find_by(self, field: str, value: str) -> Order | None:
        self._store.lookups.append((field, value))
        found = None
        for order in self._store.orders.values():
            if getattr(order, field) == value:
                found = order
                break
        await asyncio.sleep(0)
        return found


@dataclass
class FakeOrderWriter:
    _store: FakeStore

    async def mark_paid_if_pending(self, order_id: UUID, paid_at: datetime) -> bool:
        order = self._store.orders[order_id]
        if order.status != OrderStatus.PENDING:
            return False
        self._store.orders[order_id] = replace(order, status=OrderStatus.PAID, paid_at=paid_at)
        self._store.paid_writes += 1
        return True


@dataclass
class FakeRefundWriter:
    _store: FakeStore

    async def apply_refund(
        self,
        order_id: UUID,
        amount_cents: int,
        refund_token: str,
        reason: str,
        stripe_event_id: str | None = None,
        cumulative: bool = False,
    ) -> RefundResult:
        order = self._store.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if refund_token in self._store.refunds:
            return RefundResult(RefundStatus.ALREADY_PROCESSED, order_id, refund_token,
                                refunded_total_cents=order.refunded_cents)
        if order.refundable_cents <= 0:
            return RefundResult(RefundStatus.NO_REFUNDABLE_AMOUNT, order_id, refund_token,
                                refunded_total_cents=order.refunded_cents)

        if cumulative and amount_cents > 0:
            amount_cents -= order.refunded_cents
            if amount_cents <= 0:
                return RefundResult(RefundStatus.NO_REFUNDABLE_AMOUNT, order_id, refund_token,
                                    refunded_total_cents=order.refunded_cents)
        amount = min(amount_cents, order.refundable_cents) if amount_cents > 0 else order.refundable_cents
        total = order.refunded_cents + amount
        self._store.refunds[refund_token] = {
            "order_id": order_id, "amount_cents": amount, "reason": reason, "event": stripe_event_id,
        }
        self._store.orders[order_id] = replace(
            order,
            refunded_cents=total,
            status=OrderStatus.REFUNDED if total >= order.total_cents else order.status,
        )
        return RefundResult(RefundStatus.APPLIED, order_id, refund_token, amount, total)


@dataclass
class FakeRateLimits:
    _store: FakeStore

    async def get(self, key: str) -> RateLimitCounter | None:
        counter = self._store.counters.get(key)
        await asyncio.sleep(0)
        return counter

    async def start_window(self, key: str, now: datetime, window_end: datetime) -> RateLimitCounter | None:
        current = self._store.counters.get(key)
        if current is not None and not current.is_expired(now):
            return None
        fresh = RateLimitCounter(key, 1, now, window_end)
        self._store.counters[key] = fresh
        return fresh

    async def compare_and_increment(
        self, key: str, expected_count: int, window_end: datetime, now: datetime,
    ) -> int | None:
        current = self._store.counters.get(key)
        if current is None or current.count != expected_count or current.window_end != window_end:
            return None
        self._store.counters[key] = replace(current, count=current.count + 1)
        return current.count + 1


@dataclass
class FakeWebhookEvents:
    _store: FakeStore

    async def begin(
        self, event_id: str, event_type: str, correlation_id: str, received_at: datetime,
    ) -> tuple[WebhookEventRecord, bool]:
        existing = self._store.events.get(event_id)
        if existing is not None:
            return existing, False
        record = WebhookEventRecord(event_id, event_type, correlation_id, False, None)
        self._store.events[event_id] = record
        return record, True

    async def mark_succeeded(self, event_id: str, order_id: UUID | None, duration_ms: int) -> None:
        self._store.events[event_id].success = True
        self._store.events[event_id].error_message = None

    async def mark_failed(self, event_id: str, error: str) -> None:
        self._store.events[event_id].success = False
        self._store.events[event_id].error_message = error


@dataclass
class FakeOutboxWriter:
    _store: FakeStore

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        self._store.outbox.append(
            {"id": len(self._store.outbox) + 1, "event_type": event_type, "payload": payload,
             "status": "pending", "attempts": 0}
        )

    async def fetch_pending(self, batch_size: int, now: datetime) -> list[OutboxRecord]:
        pending = [r for r in self._store.outbox if r["status"] in ("pending", "failed")][:batch_size]
        for r in pending:
            r["status"] = "processing"
        return [OutboxRecord(r["id"], r["event_type"], r["payload"], r["attempts"]) for r in pending]

    def _by_id(self, record_id: int) -> dict[str, Any]:
        return next(r for r in self._store.outbox if r["id"] == record_id)

    async def mark_sent(self, ids: list[int], now: datetime) -> None:
        for record_id in ids:
            record = self._by_id(record_id)
            record["status"] = "sent"
            record["published_at"] = now

    async def mark_failed(self, record_id: int, next_retry_at: datetime, error: str) -> None:
        record = self._by_id(record_id)
        record["status"] = "failed"
        record["last_error"] = error
        record["attempts"] += 1

    async def mark_dead(self, record_id: int, error: str) -> None:
        record = self._by_id(record_id)
        record["status"] = "dead"
        record["last_error"] = error
        record["attempts"] += 1


_TERMINAL = {QueueKindName.EMAIL: QueueStatus.SENT}


@dataclass
class FakeQueueRepo:
    _items: dict[UUID, QueueItem]
    _kind: str

    def _transition(self, item_id: UUID, from_status: str, **changes: Any) -> bool:
        item = self._items.get(item_id)
        if item is None or item.status != from_status:
            return False
        self._items[item_id] = replace(item, **changes)
        return True

    async def add(self, item: QueueItem) -> QueueItem:
        self._items[item.id] = item
        return item

    async def get(self, item_id: UUID) -> QueueItem | None:
        return self._items.get(item_id)

    async def claim_batch(self, batch_size: int, now: datetime) -> list[QueueItem]:
        eligible = sorted(
            (i for i in self._items.values()
             if i.status == QueueStatus.PENDING and i.next_retry_at <= now),
            key=lambda i: i.created_at,
        )[:batch_size]
        claimed = []
        for item in eligible:
            self._items[item.id] = replace(item, status=QueueStatus.PROCESSING, updated_at=now)
            claimed.append(self._items[item.id])
        return claimed

    async def mark_processed(self, item_id: UUID, now: datetime) -> bool:
        terminal = _TERMINAL.get(self._kind, QueueStatus.PROCESSED)
        return self._transition(item_id, QueueStatus.PROCESSING, status=terminal,
                                completed_at=now, updated_at=now)

    async def mark_retry(self, item_id, attempts, next_retry_at, error, now) -> bool:
        return self._transition(item_id, QueueStatus.PROCESSING, status=QueueStatus.PENDING,
                                attempts=attempts, next_retry_at=next_retry_at,
                                last_error=error, updated_at=now)

    async def mark_dead_letter(self, item_id, attempts, error, now) -> bool:
        return self._transition(item_id, QueueStatus.PROCESSING, status=QueueStatus.DEAD_LETTER,
                                attempts=attempts, last_error=error, failed_at=now, updated_at=now)

    async def reschedule(self, item_id, next_retry_at, now) -> bool:
        return self._transition(item_id, QueueStatus.PROCESSING, status=QueueStatus.PENDING,
                                next_retry_at=next_retry_at, updated_at=now)

    async def requeue_stale(self, older_than: datetime, now: datetime) -> int:
        stale = [i for i in self._items.values()
                 if i.status == QueueStatus.PROCESSING and i.updated_at < older_than]
        for item in stale:
            self._items[item.id] = replace(item, status=QueueStatus.PENDING,
                                           next_retry_at=now, updated_at=now)
        return len(stale)

    async def list_dead_letter(self, limit: int = 50) -> list[QueueItem]:
        return [i for i in self._items.values() if i.status == QueueStatus.DEAD_LETTER][:limit]

    async def requeue_dead_letter(self, item_id: UUID, now: datetime) -> QueueItem | None:
        ok = self._transition(item_id, QueueStatus.DEAD_LETTER, status=QueueStatus.PENDING,
                              attempts=0, next_retry_at=now, last_error=None,
                              failed_at=None, updated_at=now)
        return self._items[item_id] if ok else None


class FakeUoW:
    """In-memory UoW for unit tests."""

    def __init__(self, store: FakeStore | None = None) -> None:
        self.store = store or FakeStore()
        self.orders = FakeOrderReader(self.store)
        self.orders_w = FakeOrderWriter(self.store)
        self.refunds = FakeRefundWriter(self.store)
        self.rate_limits = FakeRateLimits(self.store)
        self.webhook_events = FakeWebhookEvents(self.store)
        self.outbox = FakeOutboxWriter(self.store)
        self._committed = False
        self.commits = 0
        self.rollbacks = 0

    def queue(self, kind: str) -> FakeQueueRepo:
        return FakeQueueRepo(self.store.queues.setdefault(kind, {}), kind)

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self._committed = True
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def __aenter__(self) -> FakeUoW:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        pass


def make_uow_factory(store: FakeStore):
    @asynccontextmanager
    async def factory():
        yield FakeUoW(store)

    return factory


# ---- fake collaborators --------------------------------------------------------


class FakeFulfillment:
    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or TransientError("fulfillment returned 503", status_code=503)
        self.calls: list[dict[str, Any]] = []
        self.confirmations: list[dict[str, Any]] = []

    async def process_payment(self, *, session_id, payment_intent_id, correlation_id) -> dict[str, Any]:
        self.calls.append(
            {"session_id": session_id, "payment_intent_id": payment_intent_id,
             "correlation_id": correlation_id}
        )
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return {"success": True, "order": {"tickets_count": 2}}

    async def send_refund_confirmation(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.confirmations.append(payload)
        return {"success": True}


class FakeEmailSender:
    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or TransientError("resend returned 500", status_code=500)
        self.sent: list[dict[str, Any]] = []
        self.attempts = 0

    async def send(self, message: dict[str, Any]) -> dict[str, Any]:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        self.sent.append(message)
        return {"id": f"re_{self.attempts}"}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def uow(store) -> FakeUoW:
    return FakeUoW(store)
