"""Fixed-window rate limiting backed by durable counter rows.

Counters live in the store, never in process memory: every drain worker
is an independent invocation. Increments are compare-and-swap on the
observed count; a lost race re-reads the row and recomputes.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from payment_service.application.ports.clock import Clock, SystemClock
from payment_service.application.uow import UnitOfWork
from payment_service.domain.entities.rate_limit import RateLimitDecision, RateLimitRule

logger = logging.getLogger(__name__)

DEFAULT_CAS_ATTEMPTS = 5


async def check_rate_limit(
    key: str,
    limit: int,
    window_seconds: int,
    uow: UnitOfWork,
    *,
    clock: Clock | None = None,
    max_cas_attempts: int = DEFAULT_CAS_ATTEMPTS,
) -> RateLimitDecision:
    """Count one operation against ``key`` and report whether it may proceed."""
    clock = clock or SystemClock()
    window = timedelta(seconds=window_seconds)
    reset_at = clock.now() + window

    for _ in range(max(max_cas_attempts, 1)):
        now = clock.now()
        counter = await uow.rate_limits.get(key)

        if counter is None or counter.is_expired(now):
            fresh = await uow.rate_limits.start_window(key, now, now + window)
            if fresh is None:
                # Someone else opened the window first; count against theirs.
                continue
            await uow.commit()
            return RateLimitDecision(
                allowed=fresh.count <= limit,
                remaining=max(limit - fresh.count, 0),
                reset_at=fresh.window_end,
                limit=limit,
            )

        reset_at = counter.window_end
        if counter.count >= limit:
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_at=counter.window_end,
                limit=limit,
            )

        new_count = await uow.rate_limits.compare_and_increment(
            key, counter.count, counter.window_end, now,
        )
        if new_count is None:
            logger.debug("Rate limit contention on %s at count=%d, re-reading", key, counter.count)
            continue

        await uow.commit()
        return RateLimitDecision(
            allowed=new_count <= limit,
            remaining=max(limit - new_count, 0),
            reset_at=counter.window_end,
            limit=limit,
        )

    logger.warning(
        "Rate limit %s still contended after %d attempts, denying until %s",
        key, max_cas_attempts, reset_at.isoformat(),
    )
    return RateLimitDecision(allowed=False, remaining=0, reset_at=reset_at, limit=limit)


async def check_rules(
    rules: list[RateLimitRule],
    uow: UnitOfWork,
    *,
    clock: Clock | None = None,
    max_cas_attempts: int = DEFAULT_CAS_ATTEMPTS,
) -> RateLimitDecision | None:
    """Check every rule in order. Returns the first denial, or None if all allow."""
    for rule in rules:
        decision = await check_rate_limit(
            rule.key,
            rule.limit,
            rule.window_seconds,
            uow,
            clock=clock,
            max_cas_attempts=max_cas_attempts,
        )
        if not decision.allowed:
            logger.info(
                "Rate limit %s exceeded (%d per %ds), resets at %s",
                rule.key, rule.limit, rule.window_seconds, decision.reset_at.isoformat(),
            )
            return decision
    return None
