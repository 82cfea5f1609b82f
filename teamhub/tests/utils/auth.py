from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from teamhub.core.config import Settings
from teamhub.services.identity import ExternalTokenVerifier
from teamhub.services.tokens import InternalPrincipal, InternalTokenCodec


TEST_KID = "test-kid"


def generate_jwks(kid: str = TEST_KID) -> tuple[Any, dict[str, Any]]:
    # One RSA key pair published as a single-key JWKS.
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk["kid"] = kid
    return private_key, {"keys": [jwk]}


def make_external_token(
    private_key: Any,
    *,
    sub: str,
    email: str | None = None,
    name: str | None = None,
    kid: str = TEST_KID,
    expires_in_s: int = 300,
    **extra: Any,
) -> str:
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in_s)).timestamp()),
        **extra,
    }
    if email is not None:
        claims["email"] = email
    if name is not None:
        claims["name"] = name
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": kid})


def make_verifier(jwks: dict[str, Any], **kwargs: Any) -> ExternalTokenVerifier:
    async def _fetch(_url: str, _timeout_s: float) -> dict[str, Any]:
        return jwks

    return ExternalTokenVerifier(jwks_url="https://idp.test/jwks", fetch_jwks=_fetch, **kwargs)


def internal_headers(settings: Settings, principal: InternalPrincipal) -> dict[str, str]:
    # Headers the gateway would attach for this principal.
    return {
        "x-internal-token": InternalTokenCodec.from_settings(settings).issue(principal),
        "x-internal-api-key": settings.internal_api_key or "",
        "x-user-id": principal.user_id,
        "x-user-email": principal.email,
    }
