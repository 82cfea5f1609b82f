from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
import jwt

from teamhub.core.config import Settings


logger = logging.getLogger(__name__)

_ALLOWED_ALGS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}


class ExternalTokenError(Exception):
    # Provider token failed verification; the reason stays in the log.
    pass


@dataclass(frozen=True)
class ExternalIdentity:
    subject: str
    email: str | None
    name: str | None
    claims: dict[str, Any]


def extract_identity(claims: dict[str, Any]) -> ExternalIdentity:
    # Normalize provider claims into the subject/email/name triple.
    subject = claims.get("sub")
    if not subject:
        raise ExternalTokenError("token missing subject")
    email = claims.get("email") or claims.get("primary_email") or claims.get("preferred_username")
    name = claims.get("name")
    if not name:
        given = claims.get("given_name") or claims.get("first_name")
        family = claims.get("family_name") or claims.get("last_name")
        if given or family:
            name = " ".join(part for part in [given, family] if part)
    return ExternalIdentity(subject=str(subject), email=email, name=name, claims=claims)


async def _fetch_jwks(jwks_url: str, timeout_s: float) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout_s) as client:
        response = await client.get(jwks_url)
    response.raise_for_status()
    return response.json()


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any] | None:
    keys = jwks.get("keys") or []
    if kid:
        for key in keys:
            if key.get("kid") == kid:
                return key
        return None
    if len(keys) == 1:
        return keys[0]
    return None


def _jwk_to_key(jwk: dict[str, Any], alg: str) -> Any:
    payload = json.dumps(jwk)
    if alg.startswith("RS"):
        return jwt.algorithms.RSAAlgorithm.from_jwk(payload)
    if alg.startswith("ES"):
        return jwt.algorithms.ECAlgorithm.from_jwk(payload)
    raise ExternalTokenError("unsupported algorithm")


class ExternalTokenVerifier:
    """Verifies identity-provider session tokens against the provider JWKS.

    The key set is cached for ``cache_ttl_s`` and refetched once when a token
    names a ``kid`` the cache does not know (key rotation).
    """

    def __init__(
        self,
        *,
        jwks_url: str,
        issuer: str | None = None,
        audience: str | None = None,
        clock_skew_seconds: int = 60,
        cache_ttl_s: int = 300,
        timeout_s: float = 5.0,
        fetch_jwks: Callable[[str, float], Awaitable[dict[str, Any]]] | None = None,
    ) -> None:
        self._jwks_url = jwks_url
        self._issuer = issuer
        self._audience = audience
        self._leeway = clock_skew_seconds
        self._cache_ttl_s = cache_ttl_s
        self._timeout_s = timeout_s
        self._fetch = fetch_jwks or _fetch_jwks
        self._jwks: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExternalTokenVerifier":
        return cls(
            jwks_url=settings.idp_jwks_url or "",
            issuer=settings.idp_issuer,
            audience=settings.idp_audience,
            clock_skew_seconds=settings.idp_clock_skew_seconds,
            cache_ttl_s=settings.idp_jwks_cache_ttl_s,
            timeout_s=settings.svc_call_timeout_ms / 1000.0,
        )

    async def _key_set(self, *, force: bool = False) -> dict[str, Any]:
        async with self._lock:
            stale = time.monotonic() - self._fetched_at >= self._cache_ttl_s
            if self._jwks is None or stale or force:
                try:
                    self._jwks = await self._fetch(self._jwks_url, self._timeout_s)
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("idp_jwks_fetch_failed error=%s", type(exc).__name__)
                    raise ExternalTokenError("jwks unavailable") from exc
                self._fetched_at = time.monotonic()
            return self._jwks

    async def verify(self, token: str) -> ExternalIdentity:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise ExternalTokenError("malformed token") from exc
        alg = header.get("alg")
        if not alg or alg not in _ALLOWED_ALGS:
            raise ExternalTokenError("unsupported algorithm")
        kid = header.get("kid")
        jwk = _select_jwk(await self._key_set(), kid)
        if jwk is None and kid:
            jwk = _select_jwk(await self._key_set(force=True), kid)
        if jwk is None:
            raise ExternalTokenError("no matching signing key")
        try:
            claims = jwt.decode(
                token,
                _jwk_to_key(jwk, alg),
                algorithms=[alg],
                audience=self._audience,
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["exp", "sub"], "verify_aud": self._audience is not None},
            )
        except jwt.PyJWTError as exc:
            raise ExternalTokenError(type(exc).__name__) from exc
        return extract_identity(claims)
