from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payment_service.application.repositories.outbox import OutboxRecord
from payment_service.infrastructure.db.models.outbox import OutboxMessageModel


class OutboxWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        self._session.add(OutboxMessageModel(event_type=event_type, payload=payload))
        await self._session.flush()

    async def fetch_pending(self, batch_size: int, now: datetime) -> list[OutboxRecord]:
        M = OutboxMessageModel
        stmt = (
            select(M)
            .where(
                M.status.in_(["pending", "failed"]),
                M.next_retry_at.is_(None) | (M.next_retry_at <= now),
            )
            .order_by(M.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        if rows:
            await self._session.execute(
                update(M).where(M.id.in_([r.id for r in rows])).values(status="processing")
            )
            await self._session.flush()

        return [
            OutboxRecord(id=r.id, event_type=r.event_type, payload=r.payload, attempts=r.attempts)
            for r in rows
        ]

    async def mark_sent(self, ids: list[int], now: datetime) -> None:
        if not ids:
            return
        await self._session.execute(
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id.in_(ids))
            .values(status="sent", published_at=now, last_error=None)
        )

    async def mark_failed(self, record_id: int, next_retry_at: datetime, error: str) -> None:
        await self._session.execute(
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id == record_id)
            .values(
                status="failed",
                attempts=OutboxMessageModel.attempts + 1,
                next_retry_at=next_retry_at,
                last_error=error,
            )
        )

    async def mark_dead(self, record_id: int, error: str) -> None:
        await self._session.execute(
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id == record_id)
            .values(status="dead", attempts=OutboxMessageModel.attempts + 1, last_error=error)
        )
