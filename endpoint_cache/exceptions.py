from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


# ── Typed domain exceptions ───────────────────────────────────────────────────

class AppError(Exception):
    """Base for all application-level errors."""
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        self.detail = detail
        self.context = context or {}
        super().__init__(detail)


class NotFoundError(AppError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"


class EndpointNotFoundError(NotFoundError):
    error_code = "ENDPOINT_NOT_FOUND"

    def __init__(self, endpoint_id: int):
        self.endpoint_id = endpoint_id
        super().__init__(
            f"Endpoint {endpoint_id} is not configured",
            {"endpoint_id": endpoint_id},
        )


class EndpointDisabledError(AppError):
    status_code = 409
    error_code = "ENDPOINT_DISABLED"

    def __init__(self, endpoint_id: int, name: str):
        self.endpoint_id = endpoint_id
        super().__init__(
            f"Endpoint {name!r} is disabled",
            {"endpoint_id": endpoint_id, "name": name},
        )


class RequestFailedError(AppError):
    status_code = 502
    error_code = "UPSTREAM_REQUEST_FAILED"

    def __init__(
        self,
        status: int | str = "Unknown",
        status_text: str = "Request failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        self.status_text = status_text
        super().__init__(
            f"HTTP {status}: {status_text}",
            {"status": status, "status_text": status_text, **(context or {})},
        )


class CacheError(AppError):
    status_code = 503
    error_code = "CACHE_UNAVAILABLE"


class CacheReadError(CacheError):
    error_code = "CACHE_READ_FAILED"


class CacheWriteError(CacheError):
    error_code = "CACHE_WRITE_FAILED"


# ── FastAPI exception handlers ────────────────────────────────────────────────

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "detail": exc.detail,
            "context": exc.context,
        },
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "detail": exc.detail,
        },
    )
