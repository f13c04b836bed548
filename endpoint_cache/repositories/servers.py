from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from endpoint_cache.models import Server
from endpoint_cache.schemas import ServerCreate, ServerUpdate


class ServerRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, data: ServerCreate) -> Server:
        row = Server(**data.model_dump())
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def all(self) -> List[Server]:
        rows = await self.db.execute(select(Server).order_by(Server.name, Server.id))
        return list(rows.scalars().all())

    async def get_by_id(self, server_id: int) -> Optional[Server]:
        return await self.db.get(Server, server_id)

    async def update(self, row: Server, data: ServerUpdate) -> Server:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(row, field, value)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def delete(self, row: Server) -> None:
        await self.db.delete(row)
        await self.db.flush()
