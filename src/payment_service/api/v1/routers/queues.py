from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, status

from payment_service.api.deps import CurrentService, QueueRegistryDep, UoWDep, UoWFactoryDep
from payment_service.api.v1.schemas.queue import (
    DrainResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueItemOut,
)
from payment_service.config import settings
from payment_service.services import queue_service

router = APIRouter(prefix="/api/v1/queues", tags=["queues"])


@router.post(
    "/{kind}/items",
    response_model=EnqueueResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enqueue_item(
    kind: str,
    body: EnqueueRequest,
    principal: CurrentService,
    registry: QueueRegistryDep,
    uow: UoWDep,
) -> EnqueueResponse:
    item = await queue_service.submit(
        registry.get(kind),
        body.payload,
        uow,
        max_attempts=body.max_attempts,
        initial_delay_ms=body.initial_delay_ms,
        metadata=body.metadata,
    )
    return EnqueueResponse(id=item.id)


@router.post("/{kind}/drain", response_model=DrainResponse)
async def drain_queue(
    kind: str,
    principal: CurrentService,
    registry: QueueRegistryDep,
    uow_factory: UoWFactoryDep,
) -> DrainResponse:
    summary = await queue_service.run_drain_cycle(
        registry.get(kind),
        uow_factory,
        concurrency=settings.DRAIN_CONCURRENCY,
        max_cas_attempts=settings.RATE_LIMIT_CAS_ATTEMPTS,
    )
    return DrainResponse(
        processed=summary.processed,
        failed=summary.failed,
        rate_limited=summary.rate_limited,
        total=summary.total,
        errors=summary.errors,
    )


@router.get("/{kind}/dead-letter", response_model=list[QueueItemOut])
async def list_dead_letter(
    kind: str,
    principal: CurrentService,
    registry: QueueRegistryDep,
    uow: UoWDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[QueueItemOut]:
    queue_kind = registry.get(kind)
    items = await queue_service.list_dead_letter(queue_kind.name, uow, limit=limit)
    return [QueueItemOut.model_validate(item) for item in items]


@router.post("/{kind}/items/{item_id}/requeue", response_model=QueueItemOut)
async def requeue_item(
    kind: str,
    item_id: UUID,
    principal: CurrentService,
    registry: QueueRegistryDep,
    uow: UoWDep,
) -> QueueItemOut:
    queue_kind = registry.get(kind)
    item = await queue_service.requeue_dead_letter(queue_kind.name, item_id, uow)
    return QueueItemOut.model_validate(item)
