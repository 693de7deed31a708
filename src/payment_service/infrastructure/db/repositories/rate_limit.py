from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from payment_service.domain.entities.rate_limit import RateLimitCounter
from payment_service.infrastructure.db.mappers.rate_limit import row_to_entity
from payment_service.infrastructure.db.models.rate_limit import RateLimitCounterModel as M

_COLUMNS = (M.key, M.count, M.window_start, M.window_end)


class RateLimitRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str) -> RateLimitCounter | None:
        result = await self._session.execute(select(*_COLUMNS).where(M.key == key))
        row = result.one_or_none()
        return row_to_entity(row) if row else None

    async def start_window(
        self,
        key: str,
        now: datetime,
        window_end: datetime,
    ) -> RateLimitCounter | None:
        stmt = pg_insert(M).values(
            key=key, count=1, window_start=now, window_end=window_end, updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[M.key],
            set_={
                "count": 1,
                "window_start": stmt.excluded.window_start,
                "window_end": stmt.excluded.window_end,
                "updated_at": stmt.excluded.updated_at,
            },
            # Only an expired window may be reset; an active one belongs to someone else.
            where=M.window_end <= now,
        ).returning(*_COLUMNS)
        result = await self._session.execute(stmt)
        row = result.one_or_none()
        return row_to_entity(row) if row else None

    async def compare_and_increment(
        self,
        key: str,
        expected_count: int,
        window_end: datetime,
        now: datetime,
    ) -> int | None:
        stmt = (
            update(M)
            .where(M.key == key, M.count == expected_count, M.window_end == window_end)
            .values(count=M.count + 1, updated_at=now)
            .returning(M.count)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
