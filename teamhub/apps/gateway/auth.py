from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Request

from teamhub.core.errors import TeamhubError, UnauthenticatedError
from teamhub.services.identity import ExternalIdentity, ExternalTokenError, ExternalTokenVerifier
from teamhub.services.service_apis import UserServiceAPI
from teamhub.services.tokens import InternalPrincipal


logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _json_body(body: bytes) -> dict[str, Any]:
    # The sync route may carry email/name; anything unparsable counts as empty.
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class GatewayAuthenticator:
    """Exchange an identity-provider session token for an internal principal.

    Every route resolves the principal through the user service, except the
    registration route, which bootstraps it from the token claims and the
    request body because the user does not exist yet.
    """

    def __init__(
        self,
        *,
        verifier: ExternalTokenVerifier,
        users: UserServiceAPI,
        sync_path: str = "/api/users/sync",
    ) -> None:
        self._verifier = verifier
        self._users = users
        self._sync_path = sync_path.rstrip("/")

    def is_sync_request(self, request: Request) -> bool:
        return request.method == "POST" and request.url.path.rstrip("/") == self._sync_path

    async def authenticate(self, request: Request, body: bytes) -> InternalPrincipal:
        token = _bearer_token(request)
        if token is None:
            raise UnauthenticatedError("No token provided")
        try:
            identity = await self._verifier.verify(token)
        except ExternalTokenError as exc:
            logger.warning("gateway_token_invalid path=%s reason=%s", request.url.path, exc)
            raise UnauthenticatedError("Invalid token") from exc
        if self.is_sync_request(request):
            return self._bootstrap_principal(identity, _json_body(body))
        return await self._resolve_principal(identity, request.url.path)

    def _bootstrap_principal(self, identity: ExternalIdentity, body: dict[str, Any]) -> InternalPrincipal:
        email = body.get("email") or identity.email or ""
        name = body.get("name") or identity.name
        logger.info("gateway_sync_bootstrap subject=%s", identity.subject)
        return InternalPrincipal(
            user_id=identity.subject,
            external_id=identity.subject,
            email=str(email),
            name=str(name) if name else None,
        )

    async def _resolve_principal(self, identity: ExternalIdentity, path: str) -> InternalPrincipal:
        try:
            user = await self._users.get_user_by_external_id(identity.subject)
        except TeamhubError as exc:
            logger.warning(
                "gateway_user_lookup_failed subject=%s path=%s error=%s",
                identity.subject,
                path,
                type(exc).__name__,
            )
            raise UnauthenticatedError("User not found") from exc
        if not isinstance(user, dict) or not user.get("id"):
            logger.warning("gateway_user_missing subject=%s path=%s", identity.subject, path)
            raise UnauthenticatedError("User not found")
        return InternalPrincipal(
            user_id=str(user["id"]),
            external_id=identity.subject,
            email=str(user.get("email") or identity.email or ""),
            name=user.get("name") or identity.name,
        )
