"""Downstream trust boundary.

Every service sits behind the gateway. Depending on ``TRUST_MODE`` the caller
is established either from the signed ``x-internal-token`` or, in network
isolated deployments, from the plain ``x-user-id``/``x-user-email`` headers.
A route is guarded by exactly one of the two. ``/internal`` routes use the
shared API key instead of a user identity.
"""

from __future__ import annotations

from dataclasses import dataclass
import hmac
import logging

from fastapi import Request

from teamhub.apps.common.response import get_request_id
from teamhub.core.config import Settings
from teamhub.core.errors import ForbiddenError, InvalidTokenError, UnauthenticatedError
from teamhub.services.tokens import InternalPrincipal, InternalTokenCodec


logger = logging.getLogger(__name__)

TRUST_MODES = ("token", "headers")

# Single wire message for every trust failure; the log keeps the reason.
_UNAUTHORIZED = "Unauthorized"


@dataclass(frozen=True)
class RequestContext:
    # Caller identity handed explicitly to service handlers.
    user_id: str
    email: str
    external_id: str | None = None
    name: str | None = None
    request_id: str | None = None

    @classmethod
    def from_principal(cls, principal: InternalPrincipal, *, request_id: str | None = None) -> "RequestContext":
        return cls(
            user_id=principal.user_id,
            email=principal.email,
            external_id=principal.external_id,
            name=principal.name,
            request_id=request_id,
        )


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _codec(request: Request) -> InternalTokenCodec:
    return request.app.state.token_codec


def _from_token(request: Request, request_id: str) -> RequestContext:
    token = request.headers.get("x-internal-token")
    if not token:
        logger.warning("internal_token_missing path=%s request_id=%s", request.url.path, request_id)
        raise UnauthenticatedError(_UNAUTHORIZED)
    try:
        principal = _codec(request).verify(token)
    except InvalidTokenError as exc:
        logger.warning(
            "internal_token_invalid path=%s request_id=%s reason=%s",
            request.url.path,
            request_id,
            exc.message,
        )
        raise UnauthenticatedError(_UNAUTHORIZED) from exc
    return RequestContext.from_principal(principal, request_id=request_id)


def _from_headers(request: Request, request_id: str) -> RequestContext:
    user_id = request.headers.get("x-user-id")
    email = request.headers.get("x-user-email")
    if not user_id or not email:
        logger.warning("trust_headers_missing path=%s request_id=%s", request.url.path, request_id)
        raise UnauthenticatedError(_UNAUTHORIZED)
    return RequestContext(user_id=user_id, email=email, request_id=request_id)


async def get_request_context(request: Request) -> RequestContext:
    # Resolve the caller for the deployment's single configured trust mode.
    request_id = get_request_id(request)
    mode = _settings(request).trust_mode
    if mode == "headers":
        return _from_headers(request, request_id)
    return _from_token(request, request_id)


async def require_internal_api_key(request: Request) -> None:
    # Service-to-service routes: exact match on the shared key.
    provided = request.headers.get("x-internal-api-key")
    if not provided:
        logger.warning("internal_api_key_missing path=%s", request.url.path)
        raise UnauthenticatedError(_UNAUTHORIZED)
    expected = _settings(request).internal_api_key or ""
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("internal_api_key_mismatch path=%s", request.url.path)
        raise ForbiddenError("Forbidden")
