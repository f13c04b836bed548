from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from endpoint_cache.config import settings
from endpoint_cache.services.api_service import ApiService

log = structlog.get_logger(__name__)


async def sweep_job(service: ApiService) -> None:
    try:
        await service.sweep_expired()
    except Exception as exc:
        log.error("scheduler.sweep.failed", error=str(exc))


def start_scheduler(service: ApiService) -> AsyncIOScheduler | None:
    if not settings.SCHEDULER_ENABLED:
        log.info("scheduler.disabled")
        return None

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_job,
        trigger=IntervalTrigger(minutes=settings.CACHE_SWEEP_INTERVAL_MINUTES),
        args=[service],
        id="cache_sweep",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    log.info("scheduler.started", interval_minutes=settings.CACHE_SWEEP_INTERVAL_MINUTES)
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("scheduler.stopped")
