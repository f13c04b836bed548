from __future__ import annotations
from typing import Dict, Optional

from fastapi import APIRouter, Body, Depends

from endpoint_cache.auth import require_api_key
from endpoint_cache.dependencies import get_api_service
from endpoint_cache.schemas import (
    FetchOptions, FetchResult, ServerFetchReport, ServerFetchRequest,
)
from endpoint_cache.services.api_service import ApiService

router = APIRouter(prefix="/api/v1", tags=["data"], dependencies=[Depends(require_api_key)])


@router.post("/endpoints/{endpoint_id}/fetch", response_model=FetchResult)
async def fetch_endpoint(
    endpoint_id: int,
    options: Optional[FetchOptions] = Body(default=None),
    service: ApiService = Depends(get_api_service),
):
    return await service.fetch_one(endpoint_id, options)


@router.post("/servers/fetch", response_model=ServerFetchReport)
async def fetch_server(
    payload: ServerFetchRequest,
    service: ApiService = Depends(get_api_service),
):
    results, errors = await service.fetch_server_report(payload.server_url, payload.options)
    return ServerFetchReport(results=results, errors=errors)


@router.post("/fetch-all", response_model=Dict[str, Dict[str, FetchResult]])
async def fetch_all(
    options: Optional[FetchOptions] = Body(default=None),
    service: ApiService = Depends(get_api_service),
):
    return await service.fetch_all(options)
