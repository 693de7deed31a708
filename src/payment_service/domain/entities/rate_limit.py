from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class RateLimitCounter:
    key: str
    count: int
    window_start: datetime
    window_end: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.window_end


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    key: str
    limit: int
    window_seconds: int


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
