from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from endpoint_cache.models import ApiCache

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class CacheRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_live(self, cache_key: str, now: datetime) -> Optional[ApiCache]:
        """Rows past expires_at are treated as absent even if not swept yet."""
        rows = await self.db.execute(
            select(ApiCache).where(
                ApiCache.cache_key == cache_key,
                ApiCache.expires_at > now,
            )
        )
        return rows.scalars().first()

    async def upsert(
        self,
        endpoint_id: int,
        cache_key: str,
        data: Any,
        created_at: datetime,
        expires_at: datetime,
    ) -> None:
        values = {
            "endpoint_id": endpoint_id,
            "cache_key": cache_key,
            "data": data,
            "created_at": created_at,
            "expires_at": expires_at,
        }
        insert = _UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(ApiCache).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[ApiCache.cache_key],
                set_={k: stmt.excluded[k] for k in ("endpoint_id", "data", "created_at", "expires_at")},
            )
            await self.db.execute(stmt)
        else:
            row = (
                await self.db.execute(select(ApiCache).where(ApiCache.cache_key == cache_key))
            ).scalars().first()
            if row is None:
                self.db.add(ApiCache(**values))
            else:
                for field, value in values.items():
                    setattr(row, field, value)
        await self.db.flush()

    async def delete_expired(self, now: datetime) -> int:
        result = await self.db.execute(delete(ApiCache).where(ApiCache.expires_at <= now))
        return result.rowcount or 0

    async def delete_for_endpoint(self, endpoint_id: Optional[int] = None) -> int:
        stmt = delete(ApiCache)
        if endpoint_id is not None:
            stmt = stmt.where(ApiCache.endpoint_id == endpoint_id)
        result = await self.db.execute(stmt)
        return result.rowcount or 0
