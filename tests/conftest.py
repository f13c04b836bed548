import os

# Set required env vars BEFORE any app imports trigger Settings()
os.environ.setdefault("API_KEY", "test-api-key-for-testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CACHE_BACKEND", "sql")

from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from endpoint_cache.auth import require_api_key
from endpoint_cache.cache import ResponseCache
from endpoint_cache.clock import FakeClock
from endpoint_cache.database import build_engine, build_sessionmaker, init_db
from endpoint_cache.main import app
from endpoint_cache.schemas import (
    CachedResponse, Credential, EndpointDescriptor, HttpResponse, ServerProfile,
)
from endpoint_cache.services.api_service import ApiService
from endpoint_cache.services.credentials import CredentialResolver
from endpoint_cache.services.request_builder import RequestBuilder
from endpoint_cache.storage import SqlStorage

TEST_API_KEY = "test-api-key-for-testing"
SERVER_URL = "https://api.example.com"


class FakeStorage:
    """In-memory storage collaborator. Cache reads do no expiry filtering,
    so ResponseCache's own lazy-expiry check is what the tests exercise."""

    def __init__(self):
        self.endpoints: list[EndpointDescriptor] = []
        self.servers: list[ServerProfile] = []
        self.credentials: list[Credential] = []
        self.rows: dict[str, CachedResponse] = {}
        self.calls = Counter()
        self.fail_cache_reads = False
        self.fail_cache_writes = False
        self.fail_credentials = False
        self.failing_servers: set[str] = set()

    async def get_all_endpoints(self):
        self.calls["get_all_endpoints"] += 1
        return list(self.endpoints)

    async def get_endpoints_by_server(self, server_url):
        self.calls["get_endpoints_by_server"] += 1
        if server_url in self.failing_servers:
            raise RuntimeError("storage offline")
        return [ep for ep in self.endpoints if ep.server_url == server_url]

    async def get_all_servers(self):
        return list(self.servers)

    async def get_credentials_by_server_url(self, server_url):
        if self.fail_credentials:
            raise RuntimeError("database is locked")
        active = [c for c in self.credentials if c.server_url == server_url and c.is_active]
        return sorted(active, key=lambda c: (c.created_at, c.id), reverse=True)

    async def get_cache(self, cache_key, now):
        self.calls["get_cache"] += 1
        if self.fail_cache_reads:
            raise RuntimeError("disk I/O error")
        return self.rows.get(cache_key)

    async def put_cache(self, endpoint_id, cache_key, data, created_at, expires_at):
        self.calls["put_cache"] += 1
        if self.fail_cache_writes:
            raise RuntimeError("disk full")
        self.rows[cache_key] = CachedResponse(
            endpoint_id=endpoint_id,
            cache_key=cache_key,
            data=data,
            created_at=created_at,
            expires_at=expires_at,
        )

    async def delete_expired_cache(self, now):
        expired = [k for k, row in self.rows.items() if row.expires_at <= now]
        for k in expired:
            del self.rows[k]
        return len(expired)

    async def delete_cache(self, endpoint_id=None):
        doomed = [
            k for k, row in self.rows.items()
            if endpoint_id is None or row.endpoint_id == endpoint_id
        ]
        for k in doomed:
            del self.rows[k]
        return len(doomed)


class FakeHttp:
    """Records every request; answers per URL (query string ignored)."""

    def __init__(self):
        self.requests = []
        self._outcomes = {}

    def respond(self, url, data=None, status=200, status_text="OK"):
        self._outcomes[url] = HttpResponse(
            ok=200 <= status < 300, status=status, status_text=status_text, data=data,
        )

    def fail(self, url, exc):
        self._outcomes[url] = exc

    async def send(self, request):
        self.requests.append(request)
        outcome = self._outcomes.get(
            request.url.split("?")[0],
            HttpResponse(ok=True, status=200, status_text="OK", data={"url": request.url}),
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def make_endpoint(storage):
    counter = iter(range(100, 10_000))

    def _make(**overrides) -> EndpointDescriptor:
        endpoint_id = overrides.pop("id", None) or next(counter)
        fields = {
            "id": endpoint_id,
            "server_url": SERVER_URL,
            "name": f"endpoint-{endpoint_id}",
            "path": f"/items/{endpoint_id}",
            "method": "GET",
            "cache_duration": 60,
        }
        fields.update(overrides)
        endpoint = EndpointDescriptor(**fields)
        storage.endpoints.append(endpoint)
        return endpoint

    return _make


@pytest.fixture
def make_credential(storage):
    def _make(token_value, server_url=SERVER_URL, is_active=True, age_seconds=0, id=None):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc) - timedelta(seconds=age_seconds)
        credential = Credential(
            id=id or len(storage.credentials) + 1,
            server_url=server_url,
            token_name=f"token-{len(storage.credentials) + 1}",
            token_value=token_value,
            is_active=is_active,
            created_at=created,
        )
        storage.credentials.append(credential)
        return credential

    return _make


@pytest.fixture
def cache(storage, clock):
    return ResponseCache(storage, clock)


@pytest.fixture
def builder(storage):
    return RequestBuilder(CredentialResolver(storage), default_timeout_ms=10000)


@pytest.fixture
def service(storage, cache, builder, http, clock):
    return ApiService(storage=storage, cache=cache, builder=builder, http=http, clock=clock)


@pytest_asyncio.fixture
async def sql_storage(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield SqlStorage(build_sessionmaker(engine))
    await engine.dispose()


@pytest_asyncio.fixture
async def client(service, sql_storage):
    async def override_api_key():
        return TEST_API_KEY

    app.dependency_overrides[require_api_key] = override_api_key
    # ASGITransport skips lifespan, so wire the composition root by hand
    app.state.api_service = service
    app.state.storage = sql_storage
    app.state.scheduler = None

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
