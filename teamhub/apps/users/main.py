from __future__ import annotations

from fastapi import FastAPI

from teamhub.apps.common.app import create_service_app
from teamhub.apps.users.routes import internal_router, router
from teamhub.apps.users.store import InMemoryUserStore
from teamhub.core.config import Settings, get_settings


def create_app(settings: Settings | None = None, *, store: InMemoryUserStore | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = create_service_app("TeamHub User Service", settings)
    app.state.user_store = store or InMemoryUserStore()
    app.include_router(router)
    app.include_router(internal_router)
    return app
