from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping

import httpx

from teamhub.core.config import Settings
from teamhub.core.errors import CircuitOpenError, UpstreamHTTPError, UpstreamUnavailableError
from teamhub.services.cache import ResponseCache
from teamhub.services.resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    RetryPolicy,
    _default_retryable,
    retry_async,
)
from teamhub.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


# Route key -> stable downstream service name (breaker, log and metric key).
SERVICE_NAMES: dict[str, str] = {
    "users": "user-service",
    "teams": "team-service",
    "projects": "project-service",
    "chat": "chat-service",
    "notifications": "notification-service",
}


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, httpx.TransportError):
        return True
    return _default_retryable(exc)


def _response_body(response: httpx.Response) -> Any | None:
    # Only JSON bodies count as structured; anything else is dropped.
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class ServiceClient:
    """Outbound HTTP to one downstream service.

    Every call goes through the service's circuit breaker and the retry
    policy. Only a call that exhausts its retries is recorded as a breaker
    failure. 4xx answers are returned to the caller as ``UpstreamHTTPError``
    without retrying; they prove the peer is alive.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        http: httpx.AsyncClient,
        breaker: CircuitBreaker,
        policy: RetryPolicy,
        cache: ResponseCache,
        default_headers: Mapping[str, str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._name = name
        self._base_url = base_url.rstrip("/")
        self._http = http
        self._breaker = breaker
        self._policy = policy
        self._cache = cache
        self._default_headers = dict(default_headers or {})
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self._name

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        content: bytes | None = None,
        params: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        merged_headers = {**self._default_headers, **(headers or {})}

        async def attempt() -> httpx.Response:
            # Checked per attempt so a retry never fires through a circuit opened meanwhile.
            self._breaker.before_call()
            response = await self._http.request(
                method,
                url,
                json=json,
                content=content,
                params=params,
                headers=merged_headers,
            )
            if response.status_code >= 500:
                raise UpstreamHTTPError(self._name, response.status_code, _response_body(response))
            return response

        start = time.monotonic()
        try:
            response = await retry_async(
                attempt,
                policy=self._policy,
                retryable=_is_retryable,
                sleep=self._sleep,
                label=self._name,
            )
        except CircuitOpenError:
            raise
        except UpstreamHTTPError as exc:
            self._record_failure(start, f"status={exc.status_code}")
            raise
        except Exception as exc:  # noqa: BLE001 - transport internals stay in the log
            self._record_failure(start, type(exc).__name__)
            raise UpstreamUnavailableError(self._name) from exc

        self._breaker.record_success()
        record_external_call(
            service=self._name,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        if response.status_code >= 400:
            raise UpstreamHTTPError(self._name, response.status_code, _response_body(response))
        return response

    def _record_failure(self, start: float, reason: str) -> None:
        self._breaker.record_failure()
        record_external_call(
            service=self._name,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        logger.warning("service_call_failed name=%s reason=%s", self._name, reason)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: Any | None = None,
        headers: Mapping[str, str] | None = None,
        cache_key: str | None = None,
        cache_ttl_s: int = 60,
    ) -> Any:
        # Read-through cache applies to GET calls with an explicit key only.
        use_cache = cache_key is not None and method.upper() == "GET" and cache_ttl_s > 0
        if use_cache:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                increment_counter(f"service_cache_hit_total.{self._name}")
                return cached
            increment_counter(f"service_cache_miss_total.{self._name}")
        response = await self.send(method, path, json=json, params=params, headers=headers)
        payload = _response_body(response)
        if use_cache and payload is not None:
            await self._cache.set(cache_key, payload, cache_ttl_s)
        return payload


class ServiceClients:
    # Process-wide set of downstream clients sharing one connection pool.

    def __init__(self, clients: Mapping[str, ServiceClient], *, http: httpx.AsyncClient) -> None:
        self._clients = dict(clients)
        self._http = http

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        breakers: CircuitBreakerRegistry,
        cache: ResponseCache,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "ServiceClients":
        policy = RetryPolicy.from_settings(settings)
        http = httpx.AsyncClient(
            timeout=settings.svc_call_timeout_ms / 1000.0,
            transport=transport,
        )
        base_urls = {
            "users": settings.user_service_url,
            "teams": settings.team_service_url,
            "projects": settings.project_service_url,
            "chat": settings.chat_service_url,
            "notifications": settings.notification_service_url,
        }
        clients = {
            key: ServiceClient(
                SERVICE_NAMES[key],
                base_url,
                http=http,
                breaker=breakers.get(SERVICE_NAMES[key]),
                policy=policy,
                cache=cache,
                default_headers={"content-type": "application/json"},
                sleep=sleep,
            )
            for key, base_url in base_urls.items()
        }
        return cls(clients, http=http)

    def get(self, key: str) -> ServiceClient:
        return self._clients[key]

    def keys(self) -> list[str]:
        return list(self._clients)

    async def aclose(self) -> None:
        await self._http.aclose()
