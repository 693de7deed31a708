from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payment_service.domain.entities.queue_item import QueueItem
from payment_service.domain.value_objects.enums import QueueKindName, QueueStatus
from payment_service.infrastructure.db.mappers.queue_item import entity_to_values, model_to_entity
from payment_service.infrastructure.db.models.queue import (
    EmailQueueModel,
    QueueItemColumns,
    WebhookRetryQueueModel,
)


@dataclass(frozen=True)
class QueueTable:
    model: type[QueueItemColumns]
    payload_fields: tuple[str, ...]
    terminal_status: QueueStatus
    completed_column: str


QUEUE_TABLES: dict[str, QueueTable] = {
    QueueKindName.EMAIL: QueueTable(
        model=EmailQueueModel,
        payload_fields=("to_email", "subject", "html", "from_email", "reply_to", "email_type"),
        terminal_status=QueueStatus.SENT,
        completed_column="sent_at",
    ),
    QueueKindName.WEBHOOK_RETRY: QueueTable(
        model=WebhookRetryQueueModel,
        payload_fields=("webhook_type", "event_id", "event_type", "body", "headers"),
        terminal_status=QueueStatus.PROCESSED,
        completed_column="processed_at",
    ),
}


class SqlQueueRepo:
    """One queue table. Transitions out of ``processing`` are conditional on that status."""

    def __init__(self, session: AsyncSession, kind: str, table: QueueTable) -> None:
        self._session = session
        self._kind = kind
        self._table = table
        self._model = table.model

    def _to_entity(self, model: QueueItemColumns) -> QueueItem:
        return model_to_entity(
            model, self._kind, self._table.payload_fields, self._table.completed_column,
        )

    async def add(self, item: QueueItem) -> QueueItem:
        values = entity_to_values(item, self._table.payload_fields, self._table.completed_column)
        model = self._model(**values)
        self._session.add(model)
        await self._session.flush()
        return self._to_entity(model)

    async def get(self, item_id: UUID) -> QueueItem | None:
        result = await self._session.execute(select(self._model).where(self._model.id == item_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def claim_batch(self, batch_size: int, now: datetime) -> list[QueueItem]:
        M = self._model
        eligible = (
            select(M.id)
            .where(M.status == QueueStatus.PENDING.value, M.next_retry_at <= now)
            .order_by(M.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        ids = list((await self._session.execute(eligible)).scalars().all())
        if not ids:
            return []

        result = await self._session.execute(
            update(M)
            .where(M.id.in_(ids), M.status == QueueStatus.PENDING.value)
            .values(status=QueueStatus.PROCESSING.value, updated_at=now)
            .returning(M)
            .execution_options(synchronize_session=False)
        )
        claimed = [self._to_entity(m) for m in result.scalars().all()]
        claimed.sort(key=lambda item: item.created_at)
        return claimed

    async def _transition(self, item_id: UUID, from_status: QueueStatus, **values) -> bool:
        M = self._model
        result = await self._session.execute(
            update(M)
            .where(M.id == item_id, M.status == from_status.value)
            .values(**values)
            .returning(M.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(self, item_id: UUID, now: datetime) -> bool:
        return await self._transition(
            item_id,
            QueueStatus.PROCESSING,
            status=self._table.terminal_status.value,
            updated_at=now,
            **{self._table.completed_column: now},
        )

    async def mark_retry(
        self,
        item_id: UUID,
        attempts: int,
        next_retry_at: datetime,
        error: str,
        now: datetime,
    ) -> bool:
        return await self._transition(
            item_id,
            QueueStatus.PROCESSING,
            status=QueueStatus.PENDING.value,
            attempts=attempts,
            next_retry_at=next_retry_at,
            last_error=error,
            updated_at=now,
        )

    async def mark_dead_letter(
        self,
        item_id: UUID,
        attempts: int,
        error: str,
        now: datetime,
    ) -> bool:
        return await self._transition(
            item_id,
            QueueStatus.PROCESSING,
            status=QueueStatus.DEAD_LETTER.value,
            attempts=attempts,
            last_error=error,
            failed_at=now,
            updated_at=now,
        )

    async def reschedule(self, item_id: UUID, next_retry_at: datetime, now: datetime) -> bool:
        return await self._transition(
            item_id,
            QueueStatus.PROCESSING,
            status=QueueStatus.PENDING.value,
            next_retry_at=next_retry_at,
            updated_at=now,
        )

    async def requeue_stale(self, older_than: datetime, now: datetime) -> int:
        M = self._model
        result = await self._session.execute(
            update(M)
            .where(M.status == QueueStatus.PROCESSING.value, M.updated_at < older_than)
            .values(status=QueueStatus.PENDING.value, next_retry_at=now, updated_at=now)
            .returning(M.id)
            .execution_options(synchronize_session=False)
        )
        return len(result.scalars().all())

    async def list_dead_letter(self, limit: int = 50) -> list[QueueItem]:
        M = self._model
        result = await self._session.execute(
            select(M)
            .where(M.status == QueueStatus.DEAD_LETTER.value)
            .order_by(M.failed_at.desc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def requeue_dead_letter(self, item_id: UUID, now: datetime) -> QueueItem | None:
        M = self._model
        result = await self._session.execute(
            update(M)
            .where(M.id == item_id, M.status == QueueStatus.DEAD_LETTER.value)
            .values(
                status=QueueStatus.PENDING.value,
                attempts=0,
                next_retry_at=now,
                last_error=None,
                failed_at=None,
                updated_at=now,
            )
            .returning(M)
            .execution_options(synchronize_session=False)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None
