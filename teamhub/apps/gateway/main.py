from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.responses import Response
import httpx

from teamhub.apps.common.app import create_service_app
from teamhub.apps.common.runtime import OutboundRuntime, build_outbound_runtime
from teamhub.core.config import Settings, get_settings
from teamhub.core.errors import NotFoundError
from teamhub.apps.gateway.auth import GatewayAuthenticator
from teamhub.apps.gateway.proxy import ServiceProxy
from teamhub.services.cache import ResponseCache
from teamhub.services.identity import ExternalTokenVerifier
from teamhub.services.telemetry import external_latency_by_service


_PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
# Window for the upstream latency summary on /health.
_HEALTH_WINDOW_S = 300


def _health_extras(runtime: OutboundRuntime) -> dict[str, Any]:
    # Breaker states plus recent outbound latency and failures per peer.
    return {
        "circuits": runtime.breakers.snapshot(),
        "upstreams": external_latency_by_service(_HEALTH_WINDOW_S),
    }


def create_app(
    settings: Settings | None = None,
    *,
    verifier: ExternalTokenVerifier | None = None,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    time_source: Callable[[], float] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    settings = settings or get_settings()
    runtime = build_outbound_runtime(
        settings,
        cache=cache,
        transport=transport,
        time_source=time_source,
        sleep=sleep,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await runtime.aclose()

    app = create_service_app(
        "TeamHub API Gateway",
        settings,
        lifespan=lifespan,
        health_extras=lambda _request: _health_extras(runtime),
    )
    if app.state.token_codec is None:
        raise RuntimeError("INTERNAL_JWT_SECRET is required to run the gateway")
    app.state.runtime = runtime
    app.state.authenticator = GatewayAuthenticator(
        verifier=verifier or ExternalTokenVerifier.from_settings(settings),
        users=runtime.apis.users,
        sync_path=settings.user_sync_path,
    )
    app.state.proxy = ServiceProxy(
        clients=runtime.clients,
        codec=app.state.token_codec,
        internal_api_key=settings.internal_api_key or "",
    )

    @app.api_route("/api/{path:path}", methods=_PROXY_METHODS)
    async def proxy_api(request: Request, path: str) -> Response:
        # Route first so unknown prefixes are 404 without touching the identity provider.
        proxy: ServiceProxy = request.app.state.proxy
        route = proxy.routes.match(request.url.path)
        if route is None:
            raise NotFoundError("Service not found")
        body = await request.body()
        principal = await request.app.state.authenticator.authenticate(request, body)
        return await proxy.forward(request, route, principal, body)

    return app
