from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


# Internal tokens are never valid for longer than this, whatever the env says.
MAX_INTERNAL_TOKEN_TTL_S = 3600


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    log_level: str = "INFO"
    # Stable identifier of the running service, used in logs and health payloads.
    service_name: str = "api-gateway"
    host: str = "0.0.0.0"
    port: int = 4000

    # Pre-shared secret used to sign internal tokens; shared by every service.
    internal_jwt_secret: str | None = None
    internal_jwt_algorithm: str = "HS256"
    # Lifetime of gateway-minted internal tokens (capped to one hour).
    internal_token_ttl_s: int = MAX_INTERNAL_TOKEN_TTL_S
    # Static secret proving gateway/service origin on /internal routes.
    internal_api_key: str | None = None
    # Deployment-wide trust mode for downstream services: token or headers.
    trust_mode: Literal["token", "headers"] = "token"

    # External identity provider verification (JWKS based).
    idp_jwks_url: str | None = None
    idp_issuer: str | None = None
    idp_audience: str | None = None
    idp_clock_skew_seconds: int = 60
    # Keep JWKS cached briefly so key rotation is picked up without a restart.
    idp_jwks_cache_ttl_s: int = 300
    # Registration endpoint that may bootstrap principals from token claims.
    user_sync_path: str = "/api/users/sync"

    # Downstream service base URLs.
    user_service_url: str = "http://localhost:3001"
    team_service_url: str = "http://localhost:3002"
    project_service_url: str = "http://localhost:3003"
    chat_service_url: str = "http://localhost:3004"
    notification_service_url: str = "http://localhost:3005"

    # Redis for the response cache and the realtime backplane.
    redis_url: str = "redis://localhost:6379/0"
    # Disable to skip the read-through cache entirely.
    cache_enabled: bool = True
    cache_key_prefix: str = "teamhub:cache"

    # Circuit breaker thresholds for service-to-service calls.
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    # Retries after the first attempt; delay starts at the backoff and doubles.
    svc_max_retries: int = 3
    svc_retry_backoff_ms: int = 1000
    # Hard timeout applied to every outbound attempt.
    svc_call_timeout_ms: int = 5000

    # Pub/sub channel shared by every chat process.
    realtime_channel: str = "teamhub:realtime"
    # Backplane implementation: redis for clusters, memory for a single process.
    realtime_backplane: Literal["redis", "memory"] = "redis"

    # Browser origin allowed by CORS.
    frontend_url: str = "http://localhost:3000"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def missing_required_secrets(settings: Settings) -> list[str]:
    # Report secrets a process cannot start without.
    missing: list[str] = []
    if not settings.internal_jwt_secret:
        missing.append("INTERNAL_JWT_SECRET")
    if not settings.internal_api_key:
        missing.append("INTERNAL_API_KEY")
    if settings.service_name == "api-gateway" and not settings.idp_jwks_url:
        missing.append("IDP_JWKS_URL")
    return missing
