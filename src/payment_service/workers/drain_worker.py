"""Drain worker: runs each queue kind's drain cycle on its own interval."""
from __future__ import annotations

import asyncio
import logging

from payment_service.config import settings
from payment_service.domain.value_objects.enums import QueueKindName
from payment_service.infrastructure.db.uow import uow_scope
from payment_service.logging_setup import configure_logging
from payment_service.services import queue_service
from payment_service.services.queue_kinds import QueueRegistry
from payment_service.services.queue_service import QueueKind
from payment_service.wiring import build_http_client, build_queue_registry, build_webhook_context

logger = logging.getLogger(__name__)


def _interval_for(kind: QueueKind) -> float:
    if kind.name == QueueKindName.EMAIL:
        return settings.EMAIL_DRAIN_INTERVAL
    return settings.WEBHOOK_RETRY_DRAIN_INTERVAL


async def _drain_loop(kind: QueueKind, interval: float) -> None:
    logger.info("Drain loop for %s started (interval=%.0fs)", kind.name, interval)
    while True:
        try:
            await queue_service.run_drain_cycle(
                kind,
                uow_scope,
                concurrency=settings.DRAIN_CONCURRENCY,
                max_cas_attempts=settings.RATE_LIMIT_CAS_ATTEMPTS,
            )
        except Exception:
            logger.exception("Drain cycle for %s failed", kind.name)
        await asyncio.sleep(interval)


async def run_drain_worker(registry: QueueRegistry | None = None) -> None:
    http = build_http_client(settings)
    if registry is None:
        ctx = build_webhook_context(settings, http)
        registry = build_queue_registry(settings, http, ctx, uow_scope)

    tasks = [
        asyncio.create_task(_drain_loop(kind, _interval_for(kind)), name=f"drain-{kind.name}")
        for kind in registry
    ]
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await http.aclose()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(run_drain_worker())


if __name__ == "__main__":
    main()
