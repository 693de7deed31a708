from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from payment_service.domain.value_objects.enums import ItemOutcome


@dataclass(frozen=True, slots=True)
class QueueItem:
    id: UUID
    kind: str
    payload: dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    next_retry_at: datetime
    last_error: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    failed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ItemResult:
    item_id: UUID
    outcome: ItemOutcome
    error: str | None = None


@dataclass(slots=True)
class DrainSummary:
    processed: int = 0
    failed: int = 0
    rate_limited: int = 0
    total: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[ItemResult]) -> DrainSummary:
        summary = cls(total=len(results))
        for result in results:
            if result.outcome == ItemOutcome.PROCESSED:
                summary.processed += 1
            elif result.outcome == ItemOutcome.RATE_LIMITED:
                summary.rate_limited += 1
            else:
                summary.failed += 1
                summary.errors.append(
                    {"id": str(result.item_id), "error": result.error or result.outcome.value}
                )
        return summary
