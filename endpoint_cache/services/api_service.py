from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple

import httpx
import structlog

from endpoint_cache.cache import ResponseCache, derive_key
from endpoint_cache.clock import Clock, SystemClock, as_utc
from endpoint_cache.exceptions import (
    EndpointDisabledError,
    EndpointNotFoundError,
    RequestFailedError,
)
from endpoint_cache.schemas import (
    EndpointDescriptor,
    FetchOptions,
    FetchResult,
    ServerProfile,
)
from endpoint_cache.services.http_client import HttpClient
from endpoint_cache.services.request_builder import RequestBuilder
from endpoint_cache.storage import Storage

log = structlog.get_logger(__name__)

ServerResults = Dict[str, FetchResult]


class ApiService:
    """
    Fetches configured endpoints through the response cache.

    ``fetch_one`` fails loudly (not found, disabled, upstream failure);
    ``fetch_server`` and ``fetch_all`` never do: each endpoint and each server
    is isolated, so one broken integration cannot block the rest.
    """

    def __init__(
        self,
        storage: Storage,
        cache: ResponseCache,
        builder: RequestBuilder,
        http: HttpClient,
        clock: Clock | None = None,
    ):
        self.storage = storage
        self.cache = cache
        self.builder = builder
        self.http = http
        self._clock = clock or SystemClock()

    # ── Single endpoint ──────────────────────────────────────────────────────

    async def _resolve_endpoint(self, endpoint_id: int) -> EndpointDescriptor:
        endpoints = await self.storage.get_all_endpoints()
        endpoint = next((ep for ep in endpoints if ep.id == endpoint_id), None)
        if endpoint is None:
            raise EndpointNotFoundError(endpoint_id)
        if not endpoint.is_active:
            raise EndpointDisabledError(endpoint.id, endpoint.name)
        return endpoint

    async def _execute(self, endpoint: EndpointDescriptor, options: FetchOptions):
        request = await self.builder.build(endpoint, options)
        log.info("fetch.request", endpoint=endpoint.name, method=request.method, url=request.url)
        try:
            response = await self.http.send(request)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise RequestFailedError(
                status_text=str(exc) or type(exc).__name__,
                context={"endpoint_id": endpoint.id},
            ) from exc

        if response is None or not response.ok:
            raise RequestFailedError(
                status=response.status if response is not None else "Unknown",
                status_text=(response.status_text if response is not None else "") or "Request failed",
                context={"endpoint_id": endpoint.id},
            )
        return response.data

    async def fetch_one(
        self, endpoint_id: int, options: Optional[FetchOptions] = None
    ) -> FetchResult:
        options = options or FetchOptions()
        endpoint = await self._resolve_endpoint(endpoint_id)
        key = derive_key(endpoint.id, options.override_params)

        if not options.force_refresh:
            try:
                cached = await self.cache.get(key)
            except Exception as exc:
                log.warning("fetch.cache_read.failed", endpoint=endpoint.name, key=key, error=str(exc))
                cached = None
            if cached is not None:
                log.info("fetch.cache_hit", endpoint=endpoint.name, key=key)
                return FetchResult(
                    data=cached.data,
                    from_cache=True,
                    timestamp=as_utc(cached.created_at).isoformat(),
                    endpoint=endpoint,
                )

        data = await self._execute(endpoint, options)
        timestamp = self._clock.now().isoformat()

        if endpoint.cache_duration > 0:
            try:
                await self.cache.put(endpoint.id, key, data, endpoint.cache_duration)
            except Exception as exc:
                log.warning("fetch.cache_write.failed", endpoint=endpoint.name, key=key, error=str(exc))

        return FetchResult(data=data, from_cache=False, timestamp=timestamp, endpoint=endpoint)

    # ── Fan-out ──────────────────────────────────────────────────────────────

    async def fetch_server_report(
        self, server_url: str, options: Optional[FetchOptions] = None
    ) -> Tuple[ServerResults, Dict[str, str]]:
        """Per-endpoint results and errors, both keyed by endpoint name."""
        endpoints = await self.storage.get_endpoints_by_server(server_url)

        async def _guarded(endpoint: EndpointDescriptor):
            try:
                return endpoint, await self.fetch_one(endpoint.id, options), None
            except Exception as exc:
                log.error("fetch.endpoint.failed", endpoint=endpoint.name, error=str(exc))
                return endpoint, None, exc

        outcomes = await asyncio.gather(*[_guarded(ep) for ep in endpoints])

        results: ServerResults = {}
        errors: Dict[str, str] = {}
        for endpoint, result, exc in outcomes:
            if exc is None:
                results[endpoint.name] = result
            else:
                errors[endpoint.name] = str(exc) or type(exc).__name__

        if errors:
            log.warning("fetch.server.partial_failure", server_url=server_url, errors=errors)
        return results, errors

    async def fetch_server(
        self, server_url: str, options: Optional[FetchOptions] = None
    ) -> ServerResults:
        results, _ = await self.fetch_server_report(server_url, options)
        return results

    async def fetch_all(
        self, options: Optional[FetchOptions] = None
    ) -> Dict[str, ServerResults]:
        servers: List[ServerProfile] = await self.storage.get_all_servers()

        async def _guarded(server: ServerProfile) -> ServerResults:
            try:
                return await self.fetch_server(server.url, options)
            except Exception as exc:
                log.error("fetch.server.failed", server=server.name, error=str(exc))
                return {}

        outcomes = await asyncio.gather(*[_guarded(s) for s in servers])
        return {server.name: result for server, result in zip(servers, outcomes)}

    # ── Cache maintenance ────────────────────────────────────────────────────

    async def sweep_expired(self) -> None:
        await self.cache.sweep_expired()

    async def clear_cache(self, endpoint_id: Optional[int] = None) -> None:
        await self.cache.clear(endpoint_id)
