from __future__ import annotations

import time
from typing import Any, Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from teamhub.apps.common.errors import install_error_handlers
from teamhub.core.config import Settings
from teamhub.core.logging import configure_logging
from teamhub.services.telemetry import record_request, request_latency_by_service
from teamhub.services.tokens import InternalTokenCodec


HealthExtras = Callable[[Request], dict[str, Any]]
# Window for the inbound request summary on /health.
HEALTH_WINDOW_S = 300


def create_service_app(
    title: str,
    settings: Settings,
    *,
    lifespan: Any | None = None,
    health_extras: HealthExtras | None = None,
) -> FastAPI:
    """Build a FastAPI app with the middleware every TeamHub process shares.

    Installs request ids, request telemetry, CORS for the frontend origin, the
    ``{success: false, error}`` error handlers and an unauthenticated
    ``GET /health``. The settings and the internal token codec are placed on
    ``app.state`` for the trust dependencies.

    Raises ``RuntimeError`` when token trust is configured without a signing
    secret, so a misconfigured process never starts answering 500s.
    """
    if settings.trust_mode == "token" and not settings.internal_jwt_secret:
        raise RuntimeError("INTERNAL_JWT_SECRET is required when TRUST_MODE is token")
    configure_logging(settings.log_level)
    app = FastAPI(title=title, lifespan=lifespan)
    app.state.settings = settings
    app.state.token_codec = (
        InternalTokenCodec.from_settings(settings) if settings.internal_jwt_secret else None
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            service=settings.service_name,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "ok",
            "service": settings.service_name,
            "requests": request_latency_by_service(HEALTH_WINDOW_S).get(settings.service_name, {}),
        }
        if health_extras is not None:
            payload.update(health_extras(request))
        return payload

    return app
