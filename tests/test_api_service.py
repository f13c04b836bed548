import httpx
import pytest

from endpoint_cache.exceptions import (
    EndpointDisabledError, EndpointNotFoundError, RequestFailedError,
)
from endpoint_cache.schemas import FetchOptions, ServerProfile
from endpoint_cache.services.http_client import HttpClient
from conftest import SERVER_URL

OTHER_URL = "https://status.example.com"


@pytest.mark.asyncio
async def test_miss_then_hit(service, storage, http, make_endpoint):
    make_endpoint(id=1, method="GET", path="/a", cache_duration=60)
    http.respond(f"{SERVER_URL}/a", data={"items": [1, 2]})

    first = await service.fetch_one(1)
    assert first.from_cache is False
    assert first.data == {"items": [1, 2]}
    assert len(http.requests) == 1

    second = await service.fetch_one(1)
    assert second.from_cache is True
    assert second.data == first.data
    assert len(http.requests) == 1


@pytest.mark.asyncio
async def test_hit_timestamp_is_row_creation_time(service, clock, make_endpoint):
    make_endpoint(id=1)
    first = await service.fetch_one(1)
    clock.advance(seconds=30)
    second = await service.fetch_one(1)
    assert first.timestamp == "2024-01-15T12:00:00+00:00"
    assert second.timestamp == first.timestamp


@pytest.mark.asyncio
async def test_expired_row_triggers_live_call(service, http, clock, make_endpoint):
    make_endpoint(id=1, cache_duration=60)
    await service.fetch_one(1)
    clock.advance(seconds=61)
    result = await service.fetch_one(1)
    assert result.from_cache is False
    assert len(http.requests) == 2


@pytest.mark.asyncio
async def test_force_refresh_skips_cache_read(service, storage, http, make_endpoint):
    make_endpoint(id=1)
    await service.fetch_one(1)
    result = await service.fetch_one(1, FetchOptions(force_refresh=True))
    assert result.from_cache is False
    assert len(http.requests) == 2
    assert storage.calls["get_cache"] == 1
    assert storage.calls["put_cache"] == 2


@pytest.mark.asyncio
async def test_zero_cache_duration_never_persists(service, storage, http, make_endpoint):
    make_endpoint(id=1, cache_duration=0)
    for _ in range(3):
        result = await service.fetch_one(1)
        assert result.from_cache is False
    assert storage.rows == {}
    assert storage.calls["put_cache"] == 0
    assert len(http.requests) == 3


@pytest.mark.asyncio
async def test_override_params_partition_the_cache(service, http, make_endpoint):
    make_endpoint(id=1)
    await service.fetch_one(1, FetchOptions(override_params={"page": 1}))
    await service.fetch_one(1, FetchOptions(override_params={"page": 2}))
    hit = await service.fetch_one(1, FetchOptions(override_params={"page": 1}))
    assert hit.from_cache is True
    assert len(http.requests) == 2


@pytest.mark.asyncio
async def test_endpoint_defaults_do_not_affect_key(service, storage, http, make_endpoint):
    endpoint = make_endpoint(id=1, params={"region": "eu"})
    await service.fetch_one(1)
    storage.endpoints[0] = endpoint.model_copy(update={"params": {"region": "us"}})
    result = await service.fetch_one(1)
    assert result.from_cache is True
    assert len(http.requests) == 1


@pytest.mark.asyncio
async def test_unknown_endpoint(service, storage, http):
    with pytest.raises(EndpointNotFoundError):
        await service.fetch_one(999)
    assert http.requests == []
    assert storage.calls["get_cache"] == 0
    assert storage.calls["put_cache"] == 0


@pytest.mark.asyncio
async def test_disabled_endpoint(service, storage, http, make_endpoint):
    make_endpoint(id=5, is_active=False)
    for options in (None, FetchOptions(force_refresh=True)):
        with pytest.raises(EndpointDisabledError):
            await service.fetch_one(5, options)
    assert http.requests == []
    assert storage.calls["get_cache"] == 0


@pytest.mark.asyncio
async def test_non_ok_response_raises_with_status(service, storage, http, make_endpoint):
    make_endpoint(id=1, path="/a")
    http.respond(f"{SERVER_URL}/a", data={"error": "nope"}, status=503, status_text="Service Unavailable")
    with pytest.raises(RequestFailedError) as exc_info:
        await service.fetch_one(1)
    assert exc_info.value.status == 503
    assert exc_info.value.status_text == "Service Unavailable"
    assert "HTTP 503" in exc_info.value.detail
    assert storage.rows == {}


@pytest.mark.asyncio
async def test_transport_error_raises_unknown_status(service, storage, http, make_endpoint):
    make_endpoint(id=1, path="/a")
    http.fail(f"{SERVER_URL}/a", httpx.ConnectTimeout("timed out"))
    with pytest.raises(RequestFailedError) as exc_info:
        await service.fetch_one(1)
    assert exc_info.value.status == "Unknown"
    assert storage.rows == {}


@pytest.mark.asyncio
async def test_malformed_server_url_raises_unknown_status(service, storage, make_endpoint):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    service.http = HttpClient(httpx.AsyncClient(transport=transport))
    make_endpoint(id=1, server_url="http://api.example.com:notaport", path="/a")

    with pytest.raises(RequestFailedError) as exc_info:
        await service.fetch_one(1)
    assert exc_info.value.status == "Unknown"
    assert exc_info.value.status_code == 502
    assert storage.rows == {}


@pytest.mark.asyncio
async def test_cache_read_failure_falls_through_to_live_call(service, storage, http, make_endpoint):
    make_endpoint(id=1)
    storage.fail_cache_reads = True
    result = await service.fetch_one(1)
    assert result.from_cache is False
    assert len(http.requests) == 1


@pytest.mark.asyncio
async def test_cache_write_failure_still_returns_live_result(service, storage, http, make_endpoint):
    make_endpoint(id=1, path="/a")
    http.respond(f"{SERVER_URL}/a", data=[1])
    storage.fail_cache_writes = True
    result = await service.fetch_one(1)
    assert result.data == [1]
    assert result.from_cache is False


@pytest.mark.asyncio
async def test_fetch_server_isolates_failures(service, http, make_endpoint):
    make_endpoint(name="A", path="/a")
    make_endpoint(name="B", path="/b")
    http.respond(f"{SERVER_URL}/a", data="ok")
    http.respond(f"{SERVER_URL}/b", status=500, status_text="Internal Server Error")

    results = await service.fetch_server(SERVER_URL)
    assert list(results) == ["A"]
    assert results["A"].data == "ok"


@pytest.mark.asyncio
async def test_fetch_server_report_lists_errors(service, http, make_endpoint):
    make_endpoint(name="A", path="/a")
    make_endpoint(name="B", path="/b")
    make_endpoint(name="C", is_active=False)
    http.respond(f"{SERVER_URL}/b", status=404, status_text="Not Found")

    results, errors = await service.fetch_server_report(SERVER_URL)
    assert set(results) == {"A"}
    assert set(errors) == {"B", "C"}
    assert "404" in errors["B"]


@pytest.mark.asyncio
async def test_fetch_server_runs_endpoints_concurrently(service, http, make_endpoint):
    import asyncio

    in_flight = 0
    peak = 0
    original_send = http.send

    async def slow_send(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return await original_send(request)

    http.send = slow_send
    for name in ("A", "B", "C"):
        make_endpoint(name=name)
    results = await service.fetch_server(SERVER_URL)
    assert len(results) == 3
    assert peak == 3


@pytest.mark.asyncio
async def test_fetch_server_unknown_url_is_empty(service):
    assert await service.fetch_server("https://nowhere.example.com") == {}


@pytest.mark.asyncio
async def test_fetch_all_keys_by_server_name(service, storage, http, make_endpoint):
    storage.servers = [
        ServerProfile(id=1, name="Main", url=SERVER_URL),
        ServerProfile(id=2, name="Status", url=OTHER_URL),
    ]
    make_endpoint(name="items", path="/items")
    make_endpoint(name="health", server_url=OTHER_URL, path="/health")
    http.respond(f"{OTHER_URL}/health", status=502, status_text="Bad Gateway")

    results = await service.fetch_all()
    assert set(results) == {"Main", "Status"}
    assert set(results["Main"]) == {"items"}
    assert results["Status"] == {}


@pytest.mark.asyncio
async def test_fetch_all_survives_a_server_that_throws(service, storage, make_endpoint):
    storage.servers = [
        ServerProfile(id=1, name="Main", url=SERVER_URL),
        ServerProfile(id=2, name="Broken", url=OTHER_URL),
    ]
    storage.failing_servers.add(OTHER_URL)
    make_endpoint(name="items")

    results = await service.fetch_all()
    assert results["Broken"] == {}
    assert set(results["Main"]) == {"items"}


@pytest.mark.asyncio
async def test_clear_cache_and_sweep(service, storage, clock, make_endpoint):
    make_endpoint(id=1, cache_duration=10)
    make_endpoint(id=2, cache_duration=3600)
    await service.fetch_one(1)
    await service.fetch_one(2)
    assert len(storage.rows) == 2

    clock.advance(seconds=11)
    await service.sweep_expired()
    assert {row.endpoint_id for row in storage.rows.values()} == {2}

    await service.clear_cache(2)
    assert storage.rows == {}
