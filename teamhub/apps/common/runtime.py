from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

import httpx

from teamhub.core.config import Settings
from teamhub.services.cache import NullResponseCache, RedisResponseCache, ResponseCache
from teamhub.services.resilience import CircuitBreakerConfig, CircuitBreakerRegistry
from teamhub.services.service_apis import ServiceAPIs
from teamhub.services.service_client import ServiceClients


logger = logging.getLogger(__name__)


@dataclass
class OutboundRuntime:
    # Everything a process needs to call its peers; built once per app.
    breakers: CircuitBreakerRegistry
    cache: ResponseCache
    clients: ServiceClients
    apis: ServiceAPIs

    async def aclose(self) -> None:
        await self.clients.aclose()
        close = getattr(self.cache, "aclose", None)
        if close is not None:
            await close()


def build_cache(settings: Settings) -> ResponseCache:
    if not settings.cache_enabled:
        return NullResponseCache()
    return RedisResponseCache.from_url(settings.redis_url, prefix=settings.cache_key_prefix)


def build_outbound_runtime(
    settings: Settings,
    *,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    time_source: Callable[[], float] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> OutboundRuntime:
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig.from_settings(settings), time_source=time_source)
    resolved_cache = cache if cache is not None else build_cache(settings)
    clients = ServiceClients.build(
        settings,
        breakers=breakers,
        cache=resolved_cache,
        transport=transport,
        sleep=sleep,
    )
    # Register every breaker up front so /health lists them before first use.
    for key in clients.keys():
        breakers.get(clients.get(key).name)
    apis = ServiceAPIs(clients, internal_api_key=settings.internal_api_key or "")
    logger.info("outbound_runtime_ready service=%s peers=%s", settings.service_name, ",".join(clients.keys()))
    return OutboundRuntime(breakers=breakers, cache=resolved_cache, clients=clients, apis=apis)
