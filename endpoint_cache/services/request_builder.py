from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from endpoint_cache.config import settings
from endpoint_cache.schemas import EndpointDescriptor, FetchOptions, PreparedRequest
from endpoint_cache.services.credentials import CredentialResolver

BASE_HEADERS = {"Content-Type": "application/json"}


def _query_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_query_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def build_url(base_url: str, path: str, method: str, params: Mapping[str, Any]) -> str:
    base = base_url[:-1] if base_url.endswith("/") else base_url
    path = path[1:] if path.startswith("/") else path
    url = f"{base}/{path}"

    if method.upper() == "GET" and params:
        query = urlencode(
            [(k, _query_value(v)) for k, v in params.items() if v is not None]
        )
        if query:
            url = f"{url}?{query}"
    return url


def merge_params(
    defaults: Optional[Mapping[str, Any]], overrides: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    return {**(defaults or {}), **(overrides or {})}


class RequestBuilder:
    def __init__(
        self,
        credentials: CredentialResolver,
        default_timeout_ms: int = settings.HTTP_TIMEOUT_MS,
    ):
        self._credentials = credentials
        self._default_timeout_ms = default_timeout_ms

    async def build(
        self, endpoint: EndpointDescriptor, options: Optional[FetchOptions] = None
    ) -> PreparedRequest:
        options = options or FetchOptions()
        params = merge_params(endpoint.params, options.override_params)

        headers = {**BASE_HEADERS, **(endpoint.headers or {}), **(options.override_headers or {})}
        # Applied after overrides so callers cannot shadow the stored token
        credential = await self._credentials.resolve(endpoint.server_url)
        if credential is not None:
            headers["Authorization"] = f"Bearer {credential.token_value}"

        is_get = endpoint.method.upper() == "GET"
        body = json.dumps(params, default=str) if (params and not is_get) else None

        return PreparedRequest(
            url=build_url(endpoint.server_url, endpoint.path, endpoint.method, params),
            method=endpoint.method.upper(),
            headers=headers,
            body=body,
            timeout_ms=options.timeout_ms or self._default_timeout_ms,
        )
