"""Generic retry-queue engine shared by every queue kind.

Item lifecycle::

    pending -> processing -> sent | processed          (terminal)
               processing -> pending                   (failure, attempts < max)
               processing -> dead_letter               (failure, attempts >= max)
               processing -> pending                   (rate limited, attempts unchanged)

Kind-specific behaviour (payload shape, send operation, rate-limit buckets,
retry schedule) is supplied by a ``QueueKind``.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from payment_service.application.backoff import RetryPolicy, Sleep, delay_for, run_with_policy
from payment_service.application.exceptions import ConflictError, NotFoundError
from payment_service.application.ports.clock import Clock, SystemClock
from payment_service.application.uow import UnitOfWork, UoWFactory
from payment_service.domain.entities.queue_item import DrainSummary, ItemResult, QueueItem
from payment_service.domain.entities.rate_limit import RateLimitRule
from payment_service.domain.value_objects.enums import ItemOutcome, QueueStatus
from payment_service.services.rate_limit_service import DEFAULT_CAS_ATTEMPTS, check_rules

logger = logging.getLogger(__name__)


def _no_rules(_item: QueueItem) -> list[RateLimitRule]:
    return []


def _accept(payload: dict[str, Any]) -> dict[str, Any]:
    return payload


@dataclass(frozen=True)
class QueueKind:
    name: str
    terminal_status: QueueStatus
    default_max_attempts: int
    retry_schedule: tuple[float, ...]
    send: Callable[[QueueItem], Awaitable[Any]]
    rate_limit_rules: Callable[[QueueItem], list[RateLimitRule]] = _no_rules
    validate_payload: Callable[[dict[str, Any]], dict[str, Any]] = _accept
    send_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_retries=0))
    processing_timeout_seconds: int = 600
    batch_size: int = 50

    def next_retry_at(self, attempts: int, now: datetime) -> datetime:
        """Schedule for the retry following the ``attempts``-th failure."""
        return now + timedelta(seconds=delay_for(max(attempts - 1, 0), self.retry_schedule))


async def enqueue(
    kind: str,
    payload: dict[str, Any],
    uow: UnitOfWork,
    *,
    max_attempts: int,
    initial_delay_ms: int = 0,
    metadata: dict[str, Any] | None = None,
    clock: Clock | None = None,
) -> QueueItem:
    """Insert a pending item, eligible once ``initial_delay_ms`` has elapsed."""
    clock = clock or SystemClock()
    now = clock.now()
    item = QueueItem(
        id=uuid.uuid4(),
        kind=kind,
        payload=payload,
        status=QueueStatus.PENDING,
        attempts=0,
        max_attempts=max_attempts,
        next_retry_at=now + timedelta(milliseconds=max(initial_delay_ms, 0)),
        last_error=None,
        metadata={**(metadata or {}), "enqueued_at": now.isoformat()},
        created_at=now,
        updated_at=now,
    )
    saved = await uow.queue(kind).add(item)
    await uow.commit()
    logger.info("Enqueued %s item %s (max_attempts=%d)", kind, saved.id, max_attempts)
    return saved


async def submit(
    kind: QueueKind,
    payload: dict[str, Any],
    uow: UnitOfWork,
    *,
    max_attempts: int | None = None,
    initial_delay_ms: int = 0,
    metadata: dict[str, Any] | None = None,
    clock: Clock | None = None,
) -> QueueItem:
    """Enqueue a caller-supplied payload after the kind has validated it."""
    return await enqueue(
        kind.name,
        kind.validate_payload(payload),
        uow,
        max_attempts=max_attempts or kind.default_max_attempts,
        initial_delay_ms=initial_delay_ms,
        metadata=metadata,
        clock=clock,
    )


async def mark_processed(
    kind: QueueKind,
    item: QueueItem,
    uow: UnitOfWork,
    *,
    clock: Clock | None = None,
) -> bool:
    clock = clock or SystemClock()
    updated = await uow.queue(kind.name).mark_processed(item.id, clock.now())
    await uow.commit()
    if not updated:
        logger.warning("%s item %s was no longer processing when marked done", kind.name, item.id)
    return updated


async def mark_failed(
    kind: QueueKind,
    item: QueueItem,
    error: str,
    uow: UnitOfWork,
    *,
    clock: Clock | None = None,
) -> ItemOutcome:
    """Count a failed attempt and either schedule a retry or dead-letter the item."""
    clock = clock or SystemClock()
    now = clock.now()
    attempts = item.attempts + 1
    repo = uow.queue(kind.name)

    if attempts >= item.max_attempts:
        await repo.mark_dead_letter(item.id, attempts, error, now)
        await uow.commit()
        logger.error(
            "%s item %s moved to dead letter after %d attempts: %s",
            kind.name, item.id, attempts, error,
        )
        return ItemOutcome.DEAD_LETTERED

    next_retry_at = kind.next_retry_at(attempts, now)
    await repo.mark_retry(item.id, attempts, next_retry_at, error, now)
    await uow.commit()
    logger.warning(
        "%s item %s failed (attempt %d/%d), retrying at %s: %s",
        kind.name, item.id, attempts, item.max_attempts, next_retry_at.isoformat(), error,
    )
    return ItemOutcome.FAILED


async def run_drain_cycle(
    kind: QueueKind,
    uow_factory: UoWFactory,
    *,
    batch_size: int | None = None,
    concurrency: int = 2,
    clock: Clock | None = None,
    max_cas_attempts: int = DEFAULT_CAS_ATTEMPTS,
    sleep: Sleep = asyncio.sleep,
) -> DrainSummary:
    """Claim one batch of eligible items and settle each of them."""
    clock = clock or SystemClock()
    now = clock.now()

    async with uow_factory() as uow:
        repo = uow.queue(kind.name)
        reclaimed = await repo.requeue_stale(
            now - timedelta(seconds=kind.processing_timeout_seconds), now,
        )
        items = await repo.claim_batch(batch_size or kind.batch_size, now)
        await uow.commit()

    if reclaimed:
        logger.warning("Returned %d stale %s item(s) to pending", reclaimed, kind.name)
    if not items:
        logger.debug("No %s items to process", kind.name)
        return DrainSummary()

    logger.info("Processing %d %s item(s)", len(items), kind.name)
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _bounded(item: QueueItem) -> ItemResult:
        async with semaphore:
            return await _process_item(
                kind, item, uow_factory,
                clock=clock, max_cas_attempts=max_cas_attempts, sleep=sleep,
            )

    results = await asyncio.gather(*(_bounded(item) for item in items))
    summary = DrainSummary.from_results(list(results))
    logger.info(
        "%s drain complete: processed=%d failed=%d rate_limited=%d total=%d",
        kind.name, summary.processed, summary.failed, summary.rate_limited, summary.total,
    )
    return summary


async def _process_item(
    kind: QueueKind,
    item: QueueItem,
    uow_factory: UoWFactory,
    *,
    clock: Clock,
    max_cas_attempts: int,
    sleep: Sleep,
) -> ItemResult:
    try:
        async with uow_factory() as uow:
            denial = await check_rules(
                kind.rate_limit_rules(item), uow,
                clock=clock, max_cas_attempts=max_cas_attempts,
            )
            if denial is not None:
                await uow.queue(kind.name).reschedule(item.id, denial.reset_at, clock.now())
                await uow.commit()
                return ItemResult(item.id, ItemOutcome.RATE_LIMITED)

        try:
            await run_with_policy(
                lambda: kind.send(item),
                kind.send_policy,
                operation_name=f"{kind.name}-{item.id}",
                sleep=sleep,
            )
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            async with uow_factory() as uow:
                outcome = await mark_failed(kind, item, error, uow, clock=clock)
            return ItemResult(item.id, outcome, error)

        async with uow_factory() as uow:
            await mark_processed(kind, item, uow, clock=clock)
        return ItemResult(item.id, ItemOutcome.PROCESSED)

    except Exception as exc:  # noqa: BLE001
        logger.exception("Could not settle %s item %s", kind.name, item.id)
        return ItemResult(item.id, ItemOutcome.ERROR, str(exc) or type(exc).__name__)


async def list_dead_letter(kind: str, uow: UnitOfWork, *, limit: int = 50) -> list[QueueItem]:
    return await uow.queue(kind).list_dead_letter(limit)


async def requeue_dead_letter(
    kind: str,
    item_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    clock: Clock | None = None,
) -> QueueItem:
    """Manually put a dead-lettered item back in the retry cycle with fresh attempts."""
    clock = clock or SystemClock()
    repo = uow.queue(kind)
    item = await repo.requeue_dead_letter(item_id, clock.now())
    if item is None:
        existing = await repo.get(item_id)
        if existing is None:
            raise NotFoundError(f"No {kind} item {item_id}")
        raise ConflictError(f"{kind} item {item_id} is {existing.status}, not dead_letter")
    await uow.commit()
    logger.info("Requeued dead-lettered %s item %s", kind, item_id)
    return item
