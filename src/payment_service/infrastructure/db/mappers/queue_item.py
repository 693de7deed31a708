from __future__ import annotations

from typing import Any

from payment_service.domain.entities.queue_item import QueueItem
from payment_service.infrastructure.db.models.queue import QueueItemColumns


def model_to_entity(
    model: QueueItemColumns,
    kind: str,
    payload_fields: tuple[str, ...],
    completed_column: str,
) -> QueueItem:
    return QueueItem(
        id=model.id,
        kind=kind,
        payload={name: getattr(model, name) for name in payload_fields},
        status=model.status,
        attempts=model.attempts,
        max_attempts=model.max_attempts,
        next_retry_at=model.next_retry_at,
        last_error=model.last_error,
        metadata=dict(model.meta or {}),
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=getattr(model, completed_column),
        failed_at=model.failed_at,
    )


def entity_to_values(
    entity: QueueItem,
    payload_fields: tuple[str, ...],
    completed_column: str,
) -> dict[str, Any]:
    values: dict[str, Any] = {name: entity.payload.get(name) for name in payload_fields}
    values.update(
        id=entity.id,
        status=entity.status,
        attempts=entity.attempts,
        max_attempts=entity.max_attempts,
        next_retry_at=entity.next_retry_at,
        last_error=entity.last_error,
        meta=entity.metadata,
        created_at=entity.created_at,
        updated_at=entity.updated_at,
        failed_at=entity.failed_at,
    )
    values[completed_column] = entity.completed_at
    return values
