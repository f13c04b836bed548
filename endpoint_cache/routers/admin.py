from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
import sqlalchemy

from endpoint_cache.auth import require_api_key
from endpoint_cache.cache import ping_redis
from endpoint_cache.config import settings
from endpoint_cache.database import engine
from endpoint_cache.dependencies import get_api_service
from endpoint_cache.schemas import HealthResponse, MetricsResponse
from endpoint_cache.services.api_service import ApiService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Unauthenticated so the desktop shell can probe it before it has the key."""
    try:
        async with engine.connect() as conn:
            await conn.execute(sqlalchemy.text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "error"

    redis_status = None
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        redis_status = "ok" if await ping_redis(redis) else "error"

    scheduler = getattr(request.app.state, "scheduler", None)
    sched_status = "running" if (scheduler and scheduler.running) else "stopped"

    healthy = db_status == "ok" and redis_status in (None, "ok")
    return HealthResponse(
        status="ok" if healthy else "degraded",
        database=db_status,
        cache_backend=settings.CACHE_BACKEND,
        redis=redis_status,
        scheduler=sched_status,
        version=settings.APP_VERSION,
    )


@router.get("/metrics", response_model=MetricsResponse, dependencies=[Depends(require_api_key)])
async def metrics(service: ApiService = Depends(get_api_service)):
    stats = await service.cache.stats()
    return MetricsResponse(
        cache_hits=stats["hits"],
        cache_misses=stats["misses"],
        cache_errors=stats["errors"],
        hit_rate=stats["hit_rate"],
        total_requests=stats["total_requests"],
    )


@router.delete("/cache", status_code=204, dependencies=[Depends(require_api_key)])
async def clear_cache(
    endpoint_id: Optional[int] = Query(None),
    service: ApiService = Depends(get_api_service),
):
    await service.clear_cache(endpoint_id)


@router.post("/cache/sweep", status_code=204, dependencies=[Depends(require_api_key)])
async def sweep_cache(service: ApiService = Depends(get_api_service)):
    await service.sweep_expired()
