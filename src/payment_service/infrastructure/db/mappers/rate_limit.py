from __future__ import annotations

from typing import Any

from payment_service.domain.entities.rate_limit import RateLimitCounter


def row_to_entity(row: Any) -> RateLimitCounter:
    return RateLimitCounter(
        key=row.key,
        count=row.count,
        window_start=row.window_start,
        window_end=row.window_end,
    )
