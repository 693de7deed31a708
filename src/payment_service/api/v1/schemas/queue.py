from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class EnqueueRequest(BaseModel):
    payload: dict[str, Any]
    max_attempts: int | None = Field(default=None, ge=1, le=50)
    initial_delay_ms: int = Field(default=0, ge=0)
    metadata: dict[str, Any] | None = None


class EnqueueResponse(BaseModel):
    id: UUID


class DrainResponse(BaseModel):
    processed: int
    failed: int
    rate_limited: int
    total: int
    errors: list[dict[str, str]] = []


class QueueItemOut(BaseModel):
    id: UUID
    kind: str
    status: str
    attempts: int
    max_attempts: int
    next_retry_at: datetime
    last_error: str | None
    metadata: dict[str, Any]
    created_at: datetime
    failed_at: datetime | None = None

    model_config = {"from_attributes": True}
