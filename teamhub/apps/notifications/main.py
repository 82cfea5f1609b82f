from __future__ import annotations

from fastapi import FastAPI

from teamhub.apps.common.app import create_service_app
from teamhub.apps.notifications.routes import internal_router, router
from teamhub.apps.notifications.store import InMemoryNotificationStore
from teamhub.core.config import Settings, get_settings


def create_app(
    settings: Settings | None = None,
    *,
    store: InMemoryNotificationStore | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = create_service_app("TeamHub Notification Service", settings)
    app.state.notification_store = store or InMemoryNotificationStore()
    app.include_router(router)
    app.include_router(internal_router)
    return app
