from __future__ import annotations

from typing import AsyncContextManager, Callable, Protocol

from payment_service.application.repositories.order import (
    OrderReader,
    OrderWriter,
    RefundWriter,
)
from payment_service.application.repositories.outbox import OutboxWriter
from payment_service.application.repositories.queue import QueueRepository
from payment_service.application.repositories.rate_limit import RateLimitRepository
from payment_service.application.repositories.webhook_event import WebhookEventLog


class UnitOfWork(Protocol):
    orders: OrderReader
    orders_w: OrderWriter
    refunds: RefundWriter
    rate_limits: RateLimitRepository
    webhook_events: WebhookEventLog
    outbox: OutboxWriter

    def queue(self, kind: str) -> QueueRepository: ...

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...


UoWFactory = Callable[[], AsyncContextManager[UnitOfWork]]
