from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable

from fastapi import FastAPI
import uvicorn

from teamhub.apps.chat.main import create_app as create_chat_app
from teamhub.apps.gateway.main import create_app as create_gateway_app
from teamhub.apps.notifications.main import create_app as create_notifications_app
from teamhub.apps.projects.main import create_app as create_projects_app
from teamhub.apps.teams.main import create_app as create_teams_app
from teamhub.apps.users.main import create_app as create_users_app
from teamhub.core.config import Settings, get_settings, missing_required_secrets
from teamhub.core.logging import configure_logging


logger = logging.getLogger(__name__)


# service -> (service name, default port, app factory)
SERVICES: dict[str, tuple[str, int, Callable[[Settings], FastAPI]]] = {
    "gateway": ("api-gateway", 4000, create_gateway_app),
    "users": ("user-service", 3001, create_users_app),
    "teams": ("team-service", 3002, create_teams_app),
    "projects": ("project-service", 3003, create_projects_app),
    "chat": ("chat-service", 3004, create_chat_app),
    "notifications": ("notification-service", 3005, create_notifications_app),
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a TeamHub service")
    parser.add_argument("service", choices=sorted(SERVICES), help="Service to run")
    parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: PORT or the service default)")
    return parser


def resolve_settings(service: str, base: Settings, *, port: int | None = None, host: str | None = None) -> Settings:
    # An explicit PORT in the environment wins over the per-service default.
    service_name, default_port, _factory = SERVICES[service]
    resolved_port = port or (base.port if "port" in base.model_fields_set else default_port)
    return base.model_copy(
        update={
            "service_name": service_name,
            "port": resolved_port,
            "host": host or base.host,
        }
    )


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = resolve_settings(args.service, get_settings(), port=args.port, host=args.host)
    configure_logging(settings.log_level)
    missing = missing_required_secrets(settings)
    if missing:
        logger.error("startup_aborted service=%s missing=%s", settings.service_name, ",".join(missing))
        print(f"Missing required configuration: {', '.join(missing)}", file=sys.stderr)
        return 2
    _name, _port, factory = SERVICES[args.service]
    app = factory(settings)
    logger.info("service_starting service=%s host=%s port=%s", settings.service_name, settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
