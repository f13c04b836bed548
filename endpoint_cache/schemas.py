from __future__ import annotations
from datetime import datetime
from typing import Annotated, Any, Dict, Optional
from pydantic import AfterValidator, BaseModel, Field


# ── Configured entities ───────────────────────────────────────────────────────

class ServerProfile(BaseModel):
    id: int
    name: str
    url: str
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class Credential(BaseModel):
    id: int
    server_url: str
    token_name: str
    token_value: str
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class EndpointDescriptor(BaseModel):
    id: int
    server_url: str
    name: str
    path: str
    method: str = "GET"
    description: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    cache_duration: int = 0
    is_active: bool = True
    sort_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class CachedResponse(BaseModel):
    endpoint_id: int
    cache_key: str
    data: Any = None
    created_at: datetime
    expires_at: datetime
    model_config = {"from_attributes": True}


# ── Create / update structs (only explicitly set fields are applied) ─────────

HttpMethod = Annotated[str, AfterValidator(str.upper)]


class ServerCreate(BaseModel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True


class ServerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class TokenCreate(BaseModel):
    server_url: str = Field(min_length=1)
    token_name: str = Field(min_length=1)
    token_value: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True


class TokenUpdate(BaseModel):
    token_name: Optional[str] = Field(default=None, min_length=1)
    token_value: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class EndpointCreate(BaseModel):
    server_url: str = Field(min_length=1)
    name: str = Field(min_length=1)
    path: str
    method: HttpMethod = "GET"
    description: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    cache_duration: int = Field(default=0, ge=0)
    is_active: bool = True
    sort_order: int = 0


class EndpointUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    path: Optional[str] = None
    method: Optional[HttpMethod] = None
    description: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    cache_duration: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


# ── Fetching ──────────────────────────────────────────────────────────────────

class FetchOptions(BaseModel):
    force_refresh: bool = False
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    override_params: Optional[Dict[str, Any]] = None
    override_headers: Optional[Dict[str, str]] = None


class PreparedRequest(BaseModel):
    url: str
    method: str
    headers: Dict[str, str]
    body: Optional[str] = None
    timeout_ms: int


class HttpResponse(BaseModel):
    ok: bool
    status: int
    status_text: str = ""
    data: Any = None


class FetchResult(BaseModel):
    data: Any = None
    from_cache: bool
    timestamp: str          # ISO-8601
    endpoint: EndpointDescriptor


class ServerFetchRequest(BaseModel):
    server_url: str
    options: FetchOptions = Field(default_factory=FetchOptions)


class ServerFetchReport(BaseModel):
    results: Dict[str, FetchResult]
    errors: Dict[str, str]


# ── Admin ─────────────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    database: str
    cache_backend: str
    redis: Optional[str] = None
    scheduler: str
    version: str


class MetricsResponse(BaseModel):
    cache_hits: int
    cache_misses: int
    cache_errors: int
    hit_rate: float
    total_requests: int
