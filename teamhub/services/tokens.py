"""Internal service-to-service identity tokens.

The gateway mints one token per authenticated request; every downstream
service verifies it with the same pre-shared secret. Tokens are never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Callable

import jwt

from teamhub.core.config import MAX_INTERNAL_TOKEN_TTL_S, Settings
from teamhub.core.errors import InvalidTokenError


@dataclass(frozen=True)
class InternalPrincipal:
    user_id: str
    external_id: str
    email: str
    name: str | None = None

    def to_claims(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "externalId": self.external_id,
            "email": self.email,
            "name": self.name,
        }


class InternalTokenCodec:
    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        ttl_s: int = MAX_INTERNAL_TOKEN_TTL_S,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        if not secret:
            raise ValueError("internal token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        # Expiry may be shortened by configuration but never extended past an hour.
        self._ttl_s = max(1, min(int(ttl_s), MAX_INTERNAL_TOKEN_TTL_S))
        self._time = time_source or time.time

    @classmethod
    def from_settings(cls, settings: Settings) -> "InternalTokenCodec":
        return cls(
            settings.internal_jwt_secret or "",
            algorithm=settings.internal_jwt_algorithm,
            ttl_s=settings.internal_token_ttl_s,
        )

    @property
    def ttl_s(self) -> int:
        return self._ttl_s

    def issue(self, principal: InternalPrincipal) -> str:
        issued_at = int(self._time())
        claims = principal.to_claims()
        claims["iat"] = issued_at
        claims["exp"] = issued_at + self._ttl_s
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> InternalPrincipal:
        # Signature, structure and expiry failures collapse into one error type.
        try:
            # Time claims are checked against the injected clock below; PyJWT would use
            # the wall clock and reject tokens from a peer whose clock runs ahead.
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError() from exc
        try:
            expires_at = int(claims["exp"])
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError() from exc
        if expires_at <= self._time():
            raise InvalidTokenError()
        user_id = claims.get("userId")
        email = claims.get("email")
        if not isinstance(user_id, str) or not user_id or not isinstance(email, str):
            raise InvalidTokenError()
        name = claims.get("name")
        return InternalPrincipal(
            user_id=user_id,
            external_id=str(claims.get("externalId") or ""),
            email=email,
            name=name if isinstance(name, str) else None,
        )
