from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from endpoint_cache.models import ApiEndpoint
from endpoint_cache.schemas import EndpointCreate, EndpointUpdate


class EndpointRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, data: EndpointCreate) -> ApiEndpoint:
        row = ApiEndpoint(**data.model_dump())
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def all(self) -> List[ApiEndpoint]:
        rows = await self.db.execute(
            select(ApiEndpoint).order_by(ApiEndpoint.sort_order, ApiEndpoint.id)
        )
        return list(rows.scalars().all())

    async def by_server(self, server_url: str) -> List[ApiEndpoint]:
        rows = await self.db.execute(
            select(ApiEndpoint)
            .where(ApiEndpoint.server_url == server_url)
            .order_by(ApiEndpoint.sort_order, ApiEndpoint.id)
        )
        return list(rows.scalars().all())

    async def get_by_id(self, endpoint_id: int) -> Optional[ApiEndpoint]:
        return await self.db.get(ApiEndpoint, endpoint_id)

    async def update(self, row: ApiEndpoint, data: EndpointUpdate) -> ApiEndpoint:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(row, field, value)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def delete(self, row: ApiEndpoint) -> None:
        await self.db.delete(row)
        await self.db.flush()
