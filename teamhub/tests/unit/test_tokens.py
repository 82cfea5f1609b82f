from __future__ import annotations

import base64
import json
import time

import jwt
import pytest

from teamhub.core.errors import InvalidTokenError
from teamhub.services.tokens import InternalPrincipal, InternalTokenCodec


def _principal() -> InternalPrincipal:
    return InternalPrincipal(user_id="u-1", external_id="ext-1", email="u1@example.com", name="User One")


def _codec(now: dict[str, float], **kwargs) -> InternalTokenCodec:
    return InternalTokenCodec("secret-1", time_source=lambda: now["t"], **kwargs)


def test_issue_then_verify_round_trips_principal() -> None:
    now = {"t": 1_000_000.0}
    codec = _codec(now)
    assert codec.verify(codec.issue(_principal())) == _principal()


def test_token_expires_exactly_one_hour_after_issue() -> None:
    now = {"t": 1_000_000.0}
    codec = _codec(now)
    token = codec.issue(_principal())
    claims = jwt.decode(token, "secret-1", algorithms=["HS256"], options={"verify_exp": False})
    assert claims["exp"] - claims["iat"] == 3600

    now["t"] += 3599
    assert codec.verify(token).user_id == "u-1"
    now["t"] += 1
    with pytest.raises(InvalidTokenError):
        codec.verify(token)


def test_token_from_issuer_with_clock_ahead_is_accepted() -> None:
    issuer = _codec({"t": 1_000_120.0})
    verifier = _codec({"t": 1_000_000.0})
    assert verifier.verify(issuer.issue(_principal())) == _principal()


def test_issuer_ahead_of_wall_clock_still_verifies() -> None:
    # The verifier uses the real clock; the issuer runs a few seconds ahead.
    issuer = InternalTokenCodec("secret-1", time_source=lambda: time.time() + 5)
    assert InternalTokenCodec("secret-1").verify(issuer.issue(_principal())).user_id == "u-1"


def test_ttl_is_capped_at_one_hour() -> None:
    now = {"t": 1_000_000.0}
    codec = _codec(now, ttl_s=7200)
    assert codec.ttl_s == 3600


def test_tampered_payload_is_rejected() -> None:
    now = {"t": 1_000_000.0}
    codec = _codec(now)
    header, payload, signature = codec.issue(_principal()).split(".")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    claims["userId"] = "u-2"
    forged = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    with pytest.raises(InvalidTokenError):
        codec.verify(f"{header}.{forged}.{signature}")


def test_wrong_secret_and_garbage_are_rejected() -> None:
    now = {"t": 1_000_000.0}
    token = InternalTokenCodec("other-secret", time_source=lambda: now["t"]).issue(_principal())
    codec = _codec(now)
    with pytest.raises(InvalidTokenError):
        codec.verify(token)
    with pytest.raises(InvalidTokenError):
        codec.verify("not-a-token")


def test_missing_user_id_claim_is_rejected() -> None:
    now = {"t": 1_000_000.0}
    token = jwt.encode({"email": "x@example.com", "iat": 1_000_000, "exp": 1_003_600}, "secret-1", algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        _codec(now).verify(token)


def test_empty_secret_is_refused() -> None:
    with pytest.raises(ValueError):
        InternalTokenCodec("")
