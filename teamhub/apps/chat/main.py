from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Awaitable, Callable

from fastapi import FastAPI
import httpx
from redis.exceptions import RedisError

from teamhub.apps.chat.messaging import ChatMessaging
from teamhub.apps.chat.routes import router
from teamhub.apps.chat.socket import router as socket_router
from teamhub.apps.chat.store import InMemoryChatStore
from teamhub.apps.common.app import create_service_app
from teamhub.apps.common.runtime import build_outbound_runtime
from teamhub.core.config import Settings, get_settings
from teamhub.services.cache import ResponseCache
from teamhub.services.realtime.backplane import Backplane, LocalBackplane, RedisBackplane
from teamhub.services.realtime.hub import RealtimeHub


logger = logging.getLogger(__name__)


def build_backplane(settings: Settings) -> Backplane:
    if settings.realtime_backplane == "redis":
        return RedisBackplane.from_url(settings.redis_url, channel=settings.realtime_channel)
    return LocalBackplane()


def create_app(
    settings: Settings | None = None,
    *,
    store: InMemoryChatStore | None = None,
    hub: RealtimeHub | None = None,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    settings = settings or get_settings()
    runtime = build_outbound_runtime(settings, cache=cache, transport=transport, sleep=sleep)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await app.state.hub.start()
        except (RedisError, OSError) as exc:
            # Without the backplane this process still serves its own sockets.
            logger.warning("realtime_backplane_unavailable error=%s fallback=local", type(exc).__name__)
            await app.state.hub.fall_back_to_local()
        yield
        await app.state.hub.stop()
        await runtime.aclose()

    app = create_service_app("TeamHub Chat Service", settings, lifespan=lifespan)
    app.state.chat_store = store or InMemoryChatStore()
    app.state.hub = hub or RealtimeHub(backplane=build_backplane(settings))
    app.state.runtime = runtime
    app.state.messaging = ChatMessaging(store=app.state.chat_store, hub=app.state.hub, apis=runtime.apis)
    app.state.messaging.register_socket_events()
    app.include_router(router)
    app.include_router(socket_router)
    return app
