from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from endpoint_cache.models import ServerToken
from endpoint_cache.schemas import TokenCreate, TokenUpdate


class TokenRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, data: TokenCreate) -> ServerToken:
        row = ServerToken(**data.model_dump())
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def all(self, server_url: Optional[str] = None) -> List[ServerToken]:
        q = select(ServerToken)
        if server_url:
            q = q.where(ServerToken.server_url == server_url)
        rows = await self.db.execute(
            q.order_by(ServerToken.created_at.desc(), ServerToken.id.desc())
        )
        return list(rows.scalars().all())

    async def active_for_server(self, server_url: str) -> List[ServerToken]:
        """Newest first; id breaks ties between rows created in the same second."""
        rows = await self.db.execute(
            select(ServerToken)
            .where(ServerToken.server_url == server_url, ServerToken.is_active.is_(True))
            .order_by(ServerToken.created_at.desc(), ServerToken.id.desc())
        )
        return list(rows.scalars().all())

    async def get_by_id(self, token_id: int) -> Optional[ServerToken]:
        return await self.db.get(ServerToken, token_id)

    async def update(self, row: ServerToken, data: TokenUpdate) -> ServerToken:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(row, field, value)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def delete(self, row: ServerToken) -> None:
        await self.db.delete(row)
        await self.db.flush()
