from __future__ import annotations

from collections.abc import Iterator

import pytest

from teamhub.core.config import Settings
from teamhub.services.telemetry import reset_telemetry


@pytest.fixture
def settings() -> Settings:
    # Deterministic settings that never read the developer's .env file.
    return Settings(
        _env_file=None,
        internal_jwt_secret="test-internal-secret",
        internal_api_key="test-internal-key",
        idp_jwks_url="https://idp.test/jwks",
        trust_mode="token",
        user_service_url="http://users.test",
        team_service_url="http://teams.test",
        project_service_url="http://projects.test",
        chat_service_url="http://chat.test",
        notification_service_url="http://notifications.test",
        cache_enabled=False,
        realtime_backplane="memory",
        svc_retry_backoff_ms=1,
        svc_call_timeout_ms=1000,
    )


@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps: list[float]):
    # Record backoff delays instead of waiting them out.
    async def _sleep(delay: float) -> None:
        recorded_sleeps.append(delay)

    return _sleep


@pytest.fixture(autouse=True)
def reset_telemetry_between_tests() -> Iterator[None]:
    # Telemetry is process-global; keep counters isolated per test.
    reset_telemetry()
    yield
    reset_telemetry()
