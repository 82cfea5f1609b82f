from __future__ import annotations

import pytest

from teamhub import cli
from teamhub.core.config import Settings, get_settings, missing_required_secrets


def test_missing_secrets_abort_with_status_two(monkeypatch) -> None:
    monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))
    started = {"called": False}
    monkeypatch.setattr(cli.uvicorn, "run", lambda *_args, **_kwargs: started.update(called=True))
    assert cli.main(["users"]) == 2
    assert started["called"] is False


def test_gateway_also_requires_identity_provider(settings) -> None:
    gateway = settings.model_copy(update={"service_name": "api-gateway", "idp_jwks_url": None})
    assert missing_required_secrets(gateway) == ["IDP_JWKS_URL"]
    users = settings.model_copy(update={"service_name": "user-service", "idp_jwks_url": None})
    assert missing_required_secrets(users) == []


def test_service_defaults_and_explicit_port() -> None:
    base = Settings(_env_file=None)
    assert cli.resolve_settings("teams", base).port == 3002
    assert cli.resolve_settings("teams", base).service_name == "team-service"
    assert cli.resolve_settings("chat", base, port=9000).port == 9000
    assert cli.resolve_settings("projects", base).service_name == "project-service"
    assert cli.resolve_settings("projects", base).port == 3003


def test_port_from_environment_wins_over_service_default(monkeypatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    get_settings.cache_clear()
    try:
        assert cli.resolve_settings("users", get_settings()).port == 8080
    finally:
        get_settings.cache_clear()


def test_main_runs_selected_service(monkeypatch, settings) -> None:
    captured: dict = {}
    monkeypatch.setattr(cli, "get_settings", lambda: settings)

    def _run(app, **kwargs) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(cli.uvicorn, "run", _run)
    assert cli.main(["notifications", "--port", "3105"]) == 0
    assert captured["port"] == 3105
    assert captured["app"].title == "TeamHub Notification Service"


def test_projects_service_is_runnable(monkeypatch, settings) -> None:
    captured: dict = {}
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: captured.update(app=app, **kwargs))
    assert cli.main(["projects"]) == 0
    assert captured["port"] == 3003
    assert captured["app"].title == "TeamHub Project Service"
