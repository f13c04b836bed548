import structlog
import logging
import contextlib

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import HTTPException
from redis.asyncio import Redis

from endpoint_cache.cache import (
    RedisCacheBackend, ResponseCache, close_redis_pool, create_redis_pool,
)
from endpoint_cache.config import settings
from endpoint_cache.database import SessionLocal, init_db, close_db
from endpoint_cache.exceptions import AppError, app_error_handler, http_error_handler
from endpoint_cache.middleware import LoggingMiddleware
from endpoint_cache.routers.admin import router as admin_router
from endpoint_cache.routers.config import router as config_router
from endpoint_cache.routers.data import router as data_router
from endpoint_cache.services.api_service import ApiService
from endpoint_cache.services.credentials import CredentialResolver
from endpoint_cache.services.http_client import HttpClient
from endpoint_cache.services.request_builder import RequestBuilder
from endpoint_cache.services.scheduler import start_scheduler, stop_scheduler
from endpoint_cache.storage import SqlStorage

# ── Structured logging setup ──────────────────────────────────────────────────
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)

log = structlog.get_logger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("app.starting", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
    await init_db()

    storage = SqlStorage(SessionLocal)
    redis_pool = None
    if settings.CACHE_BACKEND == "redis":
        redis_pool = create_redis_pool()
        app.state.redis = Redis(connection_pool=redis_pool)
        cache = ResponseCache(RedisCacheBackend(app.state.redis))
    else:
        cache = ResponseCache(storage)

    http = HttpClient()
    service = ApiService(
        storage=storage,
        cache=cache,
        builder=RequestBuilder(CredentialResolver(storage)),
        http=http,
    )
    app.state.storage = storage
    app.state.api_service = service
    app.state.scheduler = start_scheduler(service)
    log.info("app.ready", cache_backend=settings.CACHE_BACKEND)
    yield
    log.info("app.shutting_down")
    stop_scheduler(app.state.scheduler)
    await http.aclose()
    await close_redis_pool(redis_pool)
    await close_db()
    log.info("app.stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    lifespan=lifespan,
)

# ── Middleware (order matters — outermost first) ───────────────────────────────
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["X-API-Key", "Content-Type"],
)

# ── Exception handlers ────────────────────────────────────────────────────────
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(data_router)
app.include_router(config_router)
app.include_router(admin_router)
