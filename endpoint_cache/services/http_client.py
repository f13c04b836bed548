from __future__ import annotations

import time

import httpx
import structlog

from endpoint_cache.config import settings
from endpoint_cache.schemas import HttpResponse, PreparedRequest

log = structlog.get_logger(__name__)


def _decode(resp: httpx.Response):
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class HttpClient:
    """Thin wrapper over a shared ``httpx.AsyncClient``.

    Non-2xx responses come back with ``ok=False``; transport failures
    (timeouts, refused connections) raise ``httpx.HTTPError`` and malformed
    URLs raise ``httpx.InvalidURL``.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        if client is None:
            limits = httpx.Limits(
                max_connections=settings.HTTP_MAX_CONNECTIONS,
                max_keepalive_connections=10,
            )
            client = httpx.AsyncClient(limits=limits)
        self._client = client

    async def send(self, request: PreparedRequest) -> HttpResponse:
        t0 = time.monotonic()
        resp = await self._client.request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body,
            timeout=request.timeout_ms / 1000,
        )
        ms = int((time.monotonic() - t0) * 1000)
        log.debug("http.response", url=request.url, status=resp.status_code, ms=ms)
        return HttpResponse(
            ok=resp.is_success,
            status=resp.status_code,
            status_text=resp.reason_phrase,
            data=_decode(resp),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
