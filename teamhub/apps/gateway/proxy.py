from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from teamhub.apps.common.response import error_response, get_request_id
from teamhub.core.errors import UpstreamHTTPError
from teamhub.services.service_client import ServiceClients
from teamhub.services.tokens import InternalPrincipal, InternalTokenCodec


logger = logging.getLogger(__name__)

# Only content negotiation headers are copied; trust headers are always rebuilt.
_FORWARDED_HEADERS = ("content-type", "accept")


@dataclass(frozen=True)
class Route:
    prefix: str
    service: str
    # Path the downstream service mounts its public routes under.
    mount: str

    def downstream_path(self, path: str) -> str:
        remainder = path[len(self.prefix):]
        return f"{self.mount}{remainder}"


DEFAULT_ROUTES = (
    Route("/api/users", "users", "/api/users"),
    Route("/api/teams", "teams", "/api/teams"),
    Route("/api/projects", "projects", "/api/projects"),
    Route("/api/chat", "chat", "/api/chat"),
    Route("/api/notifications", "notifications", "/api/notifications"),
)


class RouteTable:
    def __init__(self, routes: tuple[Route, ...] = DEFAULT_ROUTES) -> None:
        # Longest prefix first so nested prefixes win over their parents.
        self._routes = tuple(sorted(routes, key=lambda route: len(route.prefix), reverse=True))

    def match(self, path: str) -> Route | None:
        for route in self._routes:
            if path == route.prefix or path.startswith(route.prefix + "/"):
                return route
        return None


class ServiceProxy:
    """Forwards authenticated gateway requests to the owning service."""

    def __init__(
        self,
        *,
        clients: ServiceClients,
        codec: InternalTokenCodec,
        internal_api_key: str,
        routes: RouteTable | None = None,
    ) -> None:
        self._clients = clients
        self._codec = codec
        self._internal_api_key = internal_api_key
        self.routes = routes or RouteTable()

    def trust_headers(self, principal: InternalPrincipal) -> dict[str, str]:
        # A fresh internal token per forwarded request; the signed token is authoritative.
        return {
            "x-internal-token": self._codec.issue(principal),
            "x-internal-api-key": self._internal_api_key,
            "x-user-id": principal.user_id,
            "x-user-email": principal.email,
        }

    async def forward(
        self,
        request: Request,
        route: Route,
        principal: InternalPrincipal,
        body: bytes,
    ) -> Response:
        client = self._clients.get(route.service)
        headers = {
            key: value
            for key, value in request.headers.items()
            if key.lower() in _FORWARDED_HEADERS
        }
        headers.update(self.trust_headers(principal))
        headers["x-request-id"] = get_request_id(request)
        path = route.downstream_path(request.url.path)
        logger.debug("gateway_forward service=%s method=%s path=%s", client.name, request.method, path)
        try:
            response = await client.send(
                request.method,
                path,
                content=body or None,
                params=list(request.query_params.multi_items()) or None,
                headers=headers,
            )
        except UpstreamHTTPError as exc:
            return _relay_error(exc)
        return Response(
            content=response.content,
            status_code=response.status_code,
            media_type=response.headers.get("content-type"),
        )


def _relay_error(exc: UpstreamHTTPError) -> Response:
    # Structured downstream errors pass through; anything else becomes the generic envelope.
    body: Any = exc.body
    if body is None:
        body = error_response("Internal server error" if exc.status_code >= 500 else "Request failed")
    return JSONResponse(content=body, status_code=exc.status_code)
