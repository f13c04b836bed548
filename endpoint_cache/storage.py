"""
Storage collaborator for the fetch service.

Every call opens its own session: the orchestrator fans out concurrently and
an ``AsyncSession`` must never be shared between tasks.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Protocol

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from endpoint_cache.clock import as_utc
from endpoint_cache.exceptions import ConflictError, NotFoundError
from endpoint_cache.repositories.cache import CacheRepository
from endpoint_cache.repositories.endpoints import EndpointRepository
from endpoint_cache.repositories.servers import ServerRepository
from endpoint_cache.repositories.tokens import TokenRepository
from endpoint_cache.schemas import (
    CachedResponse, Credential, EndpointCreate, EndpointDescriptor,
    EndpointUpdate, ServerCreate, ServerProfile, ServerUpdate,
    TokenCreate, TokenUpdate,
)

log = structlog.get_logger(__name__)


class CacheBackend(Protocol):
    async def get_cache(self, cache_key: str, now: datetime) -> Optional[CachedResponse]: ...

    async def put_cache(
        self,
        endpoint_id: int,
        cache_key: str,
        data: Any,
        created_at: datetime,
        expires_at: datetime,
    ) -> None: ...

    async def delete_expired_cache(self, now: datetime) -> int: ...

    async def delete_cache(self, endpoint_id: Optional[int] = None) -> int: ...


class Storage(CacheBackend, Protocol):
    async def get_all_endpoints(self) -> List[EndpointDescriptor]: ...

    async def get_endpoints_by_server(self, server_url: str) -> List[EndpointDescriptor]: ...

    async def get_all_servers(self) -> List[ServerProfile]: ...

    async def get_credentials_by_server_url(self, server_url: str) -> List[Credential]: ...


def _cached(row) -> CachedResponse:
    return CachedResponse(
        endpoint_id=row.endpoint_id,
        cache_key=row.cache_key,
        data=row.data,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
    )


class SqlStorage:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("Conflicts with existing configuration", {"error": str(exc.orig)}) from exc
            except Exception:
                await session.rollback()
                raise

    # ── Reads used by the fetch service ──────────────────────────────────────

    async def get_all_endpoints(self) -> List[EndpointDescriptor]:
        async with self._session() as db:
            rows = await EndpointRepository(db).all()
            return [EndpointDescriptor.model_validate(r) for r in rows]

    async def get_endpoints_by_server(self, server_url: str) -> List[EndpointDescriptor]:
        async with self._session() as db:
            rows = await EndpointRepository(db).by_server(server_url)
            return [EndpointDescriptor.model_validate(r) for r in rows]

    async def get_all_servers(self) -> List[ServerProfile]:
        async with self._session() as db:
            rows = await ServerRepository(db).all()
            return [ServerProfile.model_validate(r) for r in rows]

    async def get_credentials_by_server_url(self, server_url: str) -> List[Credential]:
        async with self._session() as db:
            rows = await TokenRepository(db).active_for_server(server_url)
            return [Credential.model_validate(r) for r in rows]

    # ── Response cache rows ──────────────────────────────────────────────────

    async def get_cache(self, cache_key: str, now: datetime) -> Optional[CachedResponse]:
        async with self._session() as db:
            row = await CacheRepository(db).get_live(cache_key, now)
            return _cached(row) if row is not None else None

    async def put_cache(
        self,
        endpoint_id: int,
        cache_key: str,
        data: Any,
        created_at: datetime,
        expires_at: datetime,
    ) -> None:
        async with self._session() as db:
            await CacheRepository(db).upsert(endpoint_id, cache_key, data, created_at, expires_at)

    async def delete_expired_cache(self, now: datetime) -> int:
        async with self._session() as db:
            return await CacheRepository(db).delete_expired(now)

    async def delete_cache(self, endpoint_id: Optional[int] = None) -> int:
        async with self._session() as db:
            return await CacheRepository(db).delete_for_endpoint(endpoint_id)

    # ── Configuration CRUD ───────────────────────────────────────────────────

    async def create_server(self, data: ServerCreate) -> ServerProfile:
        async with self._session() as db:
            row = await ServerRepository(db).create(data)
            log.info("server.created", server_id=row.id, url=row.url)
            return ServerProfile.model_validate(row)

    async def update_server(self, server_id: int, data: ServerUpdate) -> ServerProfile:
        async with self._session() as db:
            repo = ServerRepository(db)
            row = await repo.get_by_id(server_id)
            if row is None:
                raise NotFoundError(f"Server {server_id} not found")
            return ServerProfile.model_validate(await repo.update(row, data))

    async def delete_server(self, server_id: int) -> None:
        async with self._session() as db:
            repo = ServerRepository(db)
            row = await repo.get_by_id(server_id)
            if row is None:
                raise NotFoundError(f"Server {server_id} not found")
            await repo.delete(row)
            log.info("server.deleted", server_id=server_id)

    async def get_tokens(self, server_url: Optional[str] = None) -> List[Credential]:
        async with self._session() as db:
            rows = await TokenRepository(db).all(server_url)
            return [Credential.model_validate(r) for r in rows]

    async def create_token(self, data: TokenCreate) -> Credential:
        async with self._session() as db:
            row = await TokenRepository(db).create(data)
            log.info("token.created", token_id=row.id, server_url=row.server_url)
            return Credential.model_validate(row)

    async def update_token(self, token_id: int, data: TokenUpdate) -> Credential:
        async with self._session() as db:
            repo = TokenRepository(db)
            row = await repo.get_by_id(token_id)
            if row is None:
                raise NotFoundError(f"Token {token_id} not found")
            return Credential.model_validate(await repo.update(row, data))

    async def delete_token(self, token_id: int) -> None:
        async with self._session() as db:
            repo = TokenRepository(db)
            row = await repo.get_by_id(token_id)
            if row is None:
                raise NotFoundError(f"Token {token_id} not found")
            await repo.delete(row)

    async def create_endpoint(self, data: EndpointCreate) -> EndpointDescriptor:
        async with self._session() as db:
            row = await EndpointRepository(db).create(data)
            log.info("endpoint.created", endpoint_id=row.id, name=row.name)
            return EndpointDescriptor.model_validate(row)

    async def get_endpoint(self, endpoint_id: int) -> EndpointDescriptor:
        async with self._session() as db:
            row = await EndpointRepository(db).get_by_id(endpoint_id)
            if row is None:
                raise NotFoundError(f"Endpoint {endpoint_id} not found")
            return EndpointDescriptor.model_validate(row)

    async def update_endpoint(self, endpoint_id: int, data: EndpointUpdate) -> EndpointDescriptor:
        async with self._session() as db:
            repo = EndpointRepository(db)
            row = await repo.get_by_id(endpoint_id)
            if row is None:
                raise NotFoundError(f"Endpoint {endpoint_id} not found")
            return EndpointDescriptor.model_validate(await repo.update(row, data))

    async def delete_endpoint(self, endpoint_id: int) -> None:
        async with self._session() as db:
            repo = EndpointRepository(db)
            row = await repo.get_by_id(endpoint_id)
            if row is None:
                raise NotFoundError(f"Endpoint {endpoint_id} not found")
            await repo.delete(row)
            log.info("endpoint.deleted", endpoint_id=endpoint_id)
