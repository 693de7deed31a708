from __future__ import annotations

from contextlib import asynccontextmanager
from types import TracebackType
from typing import AsyncIterator, Self

from sqlalchemy.ext.asyncio import AsyncSession

from payment_service.application.exceptions import NotFoundError
from payment_service.infrastructure.db.repositories.order import (
    OrderReaderRepo,
    OrderWriterRepo,
    RefundWriterRepo,
)
from payment_service.infrastructure.db.repositories.outbox import OutboxWriterRepo
from payment_service.infrastructure.db.repositories.queue import QUEUE_TABLES, SqlQueueRepo
from payment_service.infrastructure.db.repositories.rate_limit import RateLimitRepo
from payment_service.infrastructure.db.repositories.webhook_event import WebhookEventLogRepo
from payment_service.infrastructure.db.session import AsyncSessionLocal


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.orders = OrderReaderRepo(session)
        self.orders_w = OrderWriterRepo(session)
        self.refunds = RefundWriterRepo(session)
        self.rate_limits = RateLimitRepo(session)
        self.webhook_events = WebhookEventLogRepo(session)
        self.outbox = OutboxWriterRepo(session)
        self._queues: dict[str, SqlQueueRepo] = {}

    def queue(self, kind: str) -> SqlQueueRepo:
        repo = self._queues.get(kind)
        if repo is None:
            table = QUEUE_TABLES.get(kind)
            if table is None:
                raise NotFoundError(f"Unknown queue kind: {kind}")
            repo = self._queues[kind] = SqlQueueRepo(self._session, kind, table)
        return repo

    async def flush(self) -> None:
        await self._session.flush()

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()


@asynccontextmanager
async def uow_scope() -> AsyncIterator[SqlAlchemyUoW]:
    """One session per unit of work, for code running outside a request."""
    async with AsyncSessionLocal() as session:
        async with SqlAlchemyUoW(session) as uow:
            yield uow
