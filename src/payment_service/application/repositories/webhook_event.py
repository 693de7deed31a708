from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID


class WebhookEventLog(Protocol):
    async def begin(
        self,
        event_id: str,
        event_type: str,
        correlation_id: str,
        received_at: datetime,
    ) -> tuple[WebhookEventRecord, bool]:
        """Insert the event if unseen. Returns (record, created)."""
        ...

    async def mark_succeeded(
        self,
        event_id: str,
        order_id: UUID | None,
        duration_ms: int,
    ) -> None: ...

    async def mark_failed(self, event_id: str, error: str) -> None: ...


class WebhookEventRecord:
    """Lightweight read-model of a ledger row."""

    __slots__ = ("event_id", "event_type", "correlation_id", "success", "error_message")

    def __init__(
        self,
        event_id: str,
        event_type: str,
        correlation_id: str,
        success: bool,
        error_message: str | None,
    ) -> None:
        self.event_id = event_id
        self.event_type = event_type
        self.correlation_id = correlation_id
        self.success = success
        self.error_message = error_message
