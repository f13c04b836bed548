from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from endpoint_cache.auth import require_api_key
from endpoint_cache.dependencies import get_storage
from endpoint_cache.schemas import (
    Credential, EndpointCreate, EndpointDescriptor, EndpointUpdate,
    ServerCreate, ServerProfile, ServerUpdate, TokenCreate, TokenUpdate,
)
from endpoint_cache.storage import SqlStorage

router = APIRouter(prefix="/api/v1", tags=["config"], dependencies=[Depends(require_api_key)])


# ── Servers ───────────────────────────────────────────────────────────────────

@router.get("/servers", response_model=List[ServerProfile])
async def list_servers(storage: SqlStorage = Depends(get_storage)):
    return await storage.get_all_servers()


@router.post("/servers", response_model=ServerProfile, status_code=201)
async def create_server(data: ServerCreate, storage: SqlStorage = Depends(get_storage)):
    return await storage.create_server(data)


@router.patch("/servers/{server_id}", response_model=ServerProfile)
async def update_server(
    server_id: int, data: ServerUpdate, storage: SqlStorage = Depends(get_storage)
):
    return await storage.update_server(server_id, data)


@router.delete("/servers/{server_id}", status_code=204)
async def delete_server(server_id: int, storage: SqlStorage = Depends(get_storage)):
    await storage.delete_server(server_id)


# ── Tokens ────────────────────────────────────────────────────────────────────

@router.get("/tokens", response_model=List[Credential])
async def list_tokens(
    server_url: Optional[str] = Query(None),
    storage: SqlStorage = Depends(get_storage),
):
    return await storage.get_tokens(server_url)


@router.post("/tokens", response_model=Credential, status_code=201)
async def create_token(data: TokenCreate, storage: SqlStorage = Depends(get_storage)):
    return await storage.create_token(data)


@router.patch("/tokens/{token_id}", response_model=Credential)
async def update_token(
    token_id: int, data: TokenUpdate, storage: SqlStorage = Depends(get_storage)
):
    return await storage.update_token(token_id, data)


@router.delete("/tokens/{token_id}", status_code=204)
async def delete_token(token_id: int, storage: SqlStorage = Depends(get_storage)):
    await storage.delete_token(token_id)


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.get("/endpoints", response_model=List[EndpointDescriptor])
async def list_endpoints(
    server_url: Optional[str] = Query(None),
    storage: SqlStorage = Depends(get_storage),
):
    if server_url:
        return await storage.get_endpoints_by_server(server_url)
    return await storage.get_all_endpoints()


@router.get("/endpoints/{endpoint_id}", response_model=EndpointDescriptor)
async def get_endpoint(endpoint_id: int, storage: SqlStorage = Depends(get_storage)):
    return await storage.get_endpoint(endpoint_id)


@router.post("/endpoints", response_model=EndpointDescriptor, status_code=201)
async def create_endpoint(data: EndpointCreate, storage: SqlStorage = Depends(get_storage)):
    return await storage.create_endpoint(data)


@router.patch("/endpoints/{endpoint_id}", response_model=EndpointDescriptor)
async def update_endpoint(
    endpoint_id: int, data: EndpointUpdate, storage: SqlStorage = Depends(get_storage)
):
    return await storage.update_endpoint(endpoint_id, data)


@router.delete("/endpoints/{endpoint_id}", status_code=204)
async def delete_endpoint(endpoint_id: int, storage: SqlStorage = Depends(get_storage)):
    await storage.delete_endpoint(endpoint_id)
