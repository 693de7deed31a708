"""Outbox worker: polls pending outbox records, publishes via Redis Pub/Sub."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

import redis.asyncio as aioredis

from payment_service.application.ports.bus import EventPublisher
from payment_service.application.ports.clock import Clock, SystemClock
from payment_service.application.uow import UoWFactory
from payment_service.config import settings
from payment_service.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from payment_service.infrastructure.db.uow import uow_scope
from payment_service.logging_setup import configure_logging

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 5
MAX_DELAY_SECONDS = 300


def _calc_backoff(attempts: int, now: datetime) -> datetime:
    delay = min(BASE_DELAY_SECONDS * (2 ** attempts), MAX_DELAY_SECONDS)
    return now + timedelta(seconds=delay)


async def run_outbox_worker() -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    publisher = RedisPubSubPublisher(redis)

    logger.info(
        "Outbox worker started (poll=%.1fs, batch=%d, max_attempts=%d)",
        settings.OUTBOX_POLL_INTERVAL,
        settings.OUTBOX_BATCH_SIZE,
        settings.OUTBOX_MAX_ATTEMPTS,
    )

    try:
        while True:
            try:
                await process_batch(publisher, uow_scope)
            except Exception:
                logger.exception("Outbox worker loop error")
            await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL)
    finally:
        await redis.aclose()


async def process_batch(
    publisher: EventPublisher,
    uow_factory: UoWFactory,
    *,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    channel: str | None = None,
    clock: Clock | None = None,
) -> int:
    """Publish one batch. Returns how many records were sent."""
    clock = clock or SystemClock()
    max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS
    now = clock.now()

    async with uow_factory() as uow:
        batch = await uow.outbox.fetch_pending(batch_size or settings.OUTBOX_BATCH_SIZE, now)
        if not batch:
            return 0

        sent_ids: list[int] = []
        for record in batch:
            try:
                await publisher.publish(
                    channel or settings.REDIS_PUBSUB_CHANNEL,
                    {"event_type": record.event_type, **record.payload},
                )
                sent_ids.append(record.id)
            except Exception as exc:
                logger.exception("Failed to publish outbox record %d", record.id)
                error = str(exc) or type(exc).__name__
                if record.attempts + 1 >= max_attempts:
                    logger.error("Outbox record %d exceeded max attempts, marking dead", record.id)
                    await uow.outbox.mark_dead(record.id, error)
                else:
                    await uow.outbox.mark_failed(record.id, _calc_backoff(record.attempts, now), error)

        await uow.outbox.mark_sent(sent_ids, now)
        await uow.commit()

    if sent_ids:
        logger.info("Published %d outbox records", len(sent_ids))
    return len(sent_ids)


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(run_outbox_worker())


if __name__ == "__main__":
    main()
