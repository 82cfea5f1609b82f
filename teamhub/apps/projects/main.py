from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI
import httpx

from teamhub.apps.common.app import create_service_app
from teamhub.apps.common.runtime import build_outbound_runtime
from teamhub.apps.projects.routes import internal_router, router
from teamhub.apps.projects.store import InMemoryProjectStore
from teamhub.core.config import Settings, get_settings
from teamhub.services.cache import ResponseCache


def create_app(
    settings: Settings | None = None,
    *,
    store: InMemoryProjectStore | None = None,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    settings = settings or get_settings()
    runtime = build_outbound_runtime(settings, cache=cache, transport=transport, sleep=sleep)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await runtime.aclose()

    app = create_service_app("TeamHub Project Service", settings, lifespan=lifespan)
    app.state.project_store = store or InMemoryProjectStore()
    app.state.runtime = runtime
    app.include_router(router)
    app.include_router(internal_router)
    return app
