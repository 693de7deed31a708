from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from payment_service.domain.entities.queue_item import QueueItem


class QueueRepository(Protocol):
    """Durable store for one queue kind. Every transition is conditional."""

    async def add(self, item: QueueItem) -> QueueItem: ...

    async def get(self, item_id: UUID) -> QueueItem | None: ...

    async def claim_batch(self, batch_size: int, now: datetime) -> list[QueueItem]:
        """Move up to ``batch_size`` eligible items to ``processing``, oldest first."""
        ...

    async def mark_processed(self, item_id: UUID, now: datetime) -> bool: ...

    async def mark_retry(
        self,
        item_id: UUID,
        attempts: int,
        next_retry_at: datetime,
        error: str,
        now: datetime,
    ) -> bool: ...

    async def mark_dead_letter(
        self,
        item_id: UUID,
        attempts: int,
        error: str,
        now: datetime,
    ) -> bool: ...

    async def reschedule(self, item_id: UUID, next_retry_at: datetime, now: datetime) -> bool:
        """Return a claimed item to ``pending`` without counting an attempt."""
        ...

    async def requeue_stale(self, older_than: datetime, now: datetime) -> int: ...

    async def list_dead_letter(self, limit: int = 50) -> list[QueueItem]: ...

    async def requeue_dead_letter(self, item_id: UUID, now: datetime) -> QueueItem | None: ...
