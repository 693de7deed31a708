from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from payment_service.application.repositories.webhook_event import WebhookEventRecord
from payment_service.infrastructure.db.models.webhook_event import WebhookEventModel as M

_COLUMNS = (M.stripe_event_id, M.event_type, M.correlation_id, M.success, M.error_message)


def _to_record(row) -> WebhookEventRecord:
    return WebhookEventRecord(
        event_id=row.stripe_event_id,
        event_type=row.event_type,
        correlation_id=row.correlation_id,
        success=row.success,
        error_message=row.error_message,
    )


class WebhookEventLogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def begin(
        self,
        event_id: str,
        event_type: str,
        correlation_id: str,
        received_at: datetime,
    ) -> tuple[WebhookEventRecord, bool]:
        stmt = (
            pg_insert(M)
            .values(
                stripe_event_id=event_id,
                event_type=event_type,
                correlation_id=correlation_id,
                success=False,
                received_at=received_at,
            )
            .on_conflict_do_nothing(index_elements=[M.stripe_event_id])
            .returning(*_COLUMNS)
        )
        result = await self._session.execute(stmt)
        row = result.one_or_none()
        if row is not None:
            return _to_record(row), True

        existing = await self._session.execute(select(*_COLUMNS).where(M.stripe_event_id == event_id))
        return _to_record(existing.one()), False

    async def mark_succeeded(
        self,
        event_id: str,
        order_id: UUID | None,
        duration_ms: int,
    ) -> None:
        await self._session.execute(
            update(M)
            .where(M.stripe_event_id == event_id)
            .values(
                success=True,
                error_message=None,
                order_id=order_id,
                processing_duration_ms=duration_ms,
            )
        )

    async def mark_failed(self, event_id: str, error: str) -> None:
        await self._session.execute(
            update(M)
            .where(M.stripe_event_id == event_id)
            .values(success=False, error_message=error[:2000])
        )
