from __future__ import annotations

from typing import Any, Callable

import httpx


class RoutingTransport(httpx.AsyncBaseTransport):
    """Dispatch outbound requests to in-process ASGI apps by host name.

    Hosts can also be mapped to a plain handler to simulate network failures.
    Every request is recorded so tests can assert on what reached the wire.
    """

    def __init__(self) -> None:
        self._apps: dict[str, httpx.ASGITransport] = {}
        self._handlers: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def mount(self, host: str, app: Any) -> None:
        self._handlers.pop(host, None)
        self._apps[host] = httpx.ASGITransport(app=app)

    def fail(self, host: str, exc: Exception | None = None) -> None:
        # Every request to the host raises a transport error (connection refused).
        error = exc or httpx.ConnectError("connection refused")

        def _raise(request: httpx.Request) -> httpx.Response:
            raise error

        self._apps.pop(host, None)
        self._handlers[host] = _raise

    def calls_to(self, host: str) -> int:
        return sum(1 for request in self.requests if request.url.host == host)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        handler = self._handlers.get(host)
        if handler is not None:
            return handler(request)
        transport = self._apps.get(host)
        if transport is None:
            raise httpx.ConnectError(f"no route to {host}", request=request)
        return await transport.handle_async_request(request)
