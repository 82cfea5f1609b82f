from __future__ import annotations

import asyncio

import httpx
import pytest

from teamhub.core.errors import CircuitOpenError, UpstreamHTTPError, UpstreamUnavailableError
from teamhub.services.cache import InMemoryResponseCache, NullResponseCache, RedisResponseCache
from teamhub.services.resilience import CircuitBreaker, CircuitBreakerConfig, RetryPolicy
from teamhub.services.service_client import ServiceClient
from teamhub.services.telemetry import counters_snapshot


def _client(handler, *, fake_sleep, cache=None, threshold: int = 5) -> ServiceClient:
    now = {"t": 0.0}
    return ServiceClient(
        "team-service",
        "http://teams.test",
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        breaker=CircuitBreaker(
            "team-service",
            config=CircuitBreakerConfig(failure_threshold=threshold, open_seconds=30),
            time_source=lambda: now["t"],
        ),
        policy=RetryPolicy(timeout_ms=1000, max_retries=3, backoff_ms=1000),
        cache=cache or NullResponseCache(),
        sleep=fake_sleep,
    )


@pytest.mark.asyncio
async def test_success_on_third_attempt_does_not_count_as_failure(fake_sleep, recorded_sleeps) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503, json={"success": False, "error": "busy"})
        return httpx.Response(200, json={"success": True, "data": []})

    client = _client(handler, fake_sleep=fake_sleep)
    response = await client.send("GET", "/api/teams")
    assert response.status_code == 200
    assert calls["count"] == 3
    assert recorded_sleeps == [1.0, 2.0]
    assert client.breaker.state.consecutive_failures == 0


@pytest.mark.asyncio
async def test_exhausted_call_counts_once_and_raises_unavailable(fake_sleep) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, fake_sleep=fake_sleep)
    with pytest.raises(UpstreamUnavailableError):
        await client.send("GET", "/api/teams")
    assert calls["count"] == 4
    assert client.breaker.state.consecutive_failures == 1


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_network_io(fake_sleep) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, fake_sleep=fake_sleep)
    for _ in range(5):
        with pytest.raises(UpstreamUnavailableError):
            await client.send("GET", "/api/teams")
    attempts = calls["count"]

    with pytest.raises(CircuitOpenError):
        await client.send("GET", "/api/teams")
    assert calls["count"] == attempts
    assert counters_snapshot()["circuit_breaker_rejected_total.team-service"] == 1


@pytest.mark.asyncio
async def test_client_error_is_not_retried_and_keeps_circuit_closed(fake_sleep) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(403, json={"success": False, "error": "Forbidden"})

    client = _client(handler, fake_sleep=fake_sleep, threshold=1)
    with pytest.raises(UpstreamHTTPError) as exc_info:
        await client.send("GET", "/api/teams/t-1")
    assert exc_info.value.status_code == 403
    assert exc_info.value.body == {"success": False, "error": "Forbidden"}
    assert calls["count"] == 1
    assert client.breaker.state.is_open is False


@pytest.mark.asyncio
async def test_exhausted_server_errors_keep_status(fake_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"success": False, "error": "boom"})

    client = _client(handler, fake_sleep=fake_sleep)
    with pytest.raises(UpstreamHTTPError) as exc_info:
        await client.send("POST", "/api/teams", json={"name": "x"})
    assert exc_info.value.status_code == 500
    assert client.breaker.state.consecutive_failures == 1


@pytest.mark.asyncio
async def test_cache_hit_makes_one_network_call(fake_sleep) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json={"success": True, "data": {"isMember": True}})

    client = _client(handler, fake_sleep=fake_sleep, cache=InMemoryResponseCache())
    first = await client.request_json("GET", "/internal/teams/t-1/check-member/u-1", cache_key="team:t-1:member:u-1")
    second = await client.request_json("GET", "/internal/teams/t-1/check-member/u-1", cache_key="team:t-1:member:u-1")
    assert first == second == {"success": True, "data": {"isMember": True}}
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_zero_ttl_calls_every_time(fake_sleep) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json={"success": True, "data": []})

    client = _client(handler, fake_sleep=fake_sleep, cache=InMemoryResponseCache())
    for _ in range(3):
        await client.request_json("GET", "/api/teams", cache_key="teams:u-1", cache_ttl_s=0)
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_cached_entry_expires_after_ttl(fake_sleep) -> None:
    now = {"t": 0.0}
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json={"n": calls["count"]})

    client = _client(handler, fake_sleep=fake_sleep, cache=InMemoryResponseCache(time_source=lambda: now["t"]))
    assert await client.request_json("GET", "/x", cache_key="k", cache_ttl_s=60) == {"n": 1}
    now["t"] = 59.0
    assert await client.request_json("GET", "/x", cache_key="k", cache_ttl_s=60) == {"n": 1}
    now["t"] = 60.0
    assert await client.request_json("GET", "/x", cache_key="k", cache_ttl_s=60) == {"n": 2}


@pytest.mark.asyncio
async def test_post_is_never_cached(fake_sleep) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(201, json={"ok": True})

    client = _client(handler, fake_sleep=fake_sleep, cache=InMemoryResponseCache())
    await client.request_json("POST", "/x", json={}, cache_key="k")
    await client.request_json("POST", "/x", json={}, cache_key="k")
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_cache_backend_failure_falls_through_to_live_call(fake_sleep) -> None:
    class BrokenRedis:
        async def get(self, _key: str):
            raise ConnectionError("redis down")

        async def set(self, *_args, **_kwargs):
            raise ConnectionError("redis down")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"live": True})

    client = _client(handler, fake_sleep=fake_sleep, cache=RedisResponseCache(BrokenRedis()))
    assert await client.request_json("GET", "/x", cache_key="k") == {"live": True}


@pytest.mark.asyncio
async def test_retry_in_flight_stops_once_another_call_opens_the_circuit() -> None:
    breaker = CircuitBreaker(
        "team-service",
        config=CircuitBreakerConfig(failure_threshold=1, open_seconds=30),
        time_source=lambda: 0.0,
    )
    attempts = {"/first": 0, "/second": 0}
    second_waiting = asyncio.Event()
    first_finished = asyncio.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        attempts[request.url.path] += 1
        raise httpx.ConnectError("connection refused", request=request)

    async def no_wait(_delay: float) -> None:
        return None

    async def held_backoff(_delay: float) -> None:
        # Park the second call in its backoff until the first one has failed.
        second_waiting.set()
        await first_finished.wait()

    def build(sleep) -> ServiceClient:
        return ServiceClient(
            "team-service",
            "http://teams.test",
            http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            breaker=breaker,
            policy=RetryPolicy(timeout_ms=1000, max_retries=3, backoff_ms=1000),
            cache=NullResponseCache(),
            sleep=sleep,
        )

    second = asyncio.create_task(build(held_backoff).send("GET", "/second"))
    await second_waiting.wait()
    with pytest.raises(UpstreamUnavailableError):
        await build(no_wait).send("GET", "/first")
    assert breaker.state.is_open
    first_finished.set()

    with pytest.raises(CircuitOpenError):
        await second
    assert attempts == {"/first": 4, "/second": 1}
    assert breaker.state.consecutive_failures == 1
