from __future__ import annotations

from datetime import datetime
from typing import Protocol

from payment_service.domain.entities.rate_limit import RateLimitCounter


class RateLimitRepository(Protocol):
    async def get(self, key: str) -> RateLimitCounter | None: ...

    async def start_window(
        self,
        key: str,
        now: datetime,
        window_end: datetime,
    ) -> RateLimitCounter | None:
        """Insert a counter with count=1, or overwrite one whose window expired.

        Returns None when an active window already exists for ``key``.
        """
        ...

    async def compare_and_increment(
        self,
        key: str,
        expected_count: int,
        window_end: datetime,
        now: datetime,
    ) -> int | None:
        """Increment only if the row still holds ``expected_count`` in the same window."""
        ...
