from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from teamhub.apps.common.response import error_response, get_request_id
from teamhub.core.errors import TeamhubError, UpstreamHTTPError, UpstreamUnavailableError


logger = logging.getLogger(__name__)


def _detail_message(detail: Any) -> str:
    # HTTPException details may be strings or {"message": ...} dicts.
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("error") or "Request failed")
    if isinstance(detail, str) and detail:
        return detail
    return "Request failed"


async def teamhub_exception_handler(request: Request, exc: TeamhubError) -> JSONResponse:
    # Upstream failures keep their transport details in the log, never in the body.
    if isinstance(exc, UpstreamUnavailableError):
        logger.warning(
            "upstream_unavailable service=%s path=%s request_id=%s reason=%s",
            exc.service,
            request.url.path,
            get_request_id(request),
            exc.message,
        )
        return JSONResponse(content=error_response(exc.public_message), status_code=exc.status_code)
    if isinstance(exc, UpstreamHTTPError):
        logger.warning(
            "upstream_error service=%s status=%s path=%s request_id=%s",
            exc.service,
            exc.status_code,
            request.url.path,
            get_request_id(request),
        )
        if exc.status_code >= 500:
            return JSONResponse(content=error_response("Internal server error"), status_code=500)
        return JSONResponse(content=error_response("Request failed"), status_code=exc.status_code)
    return JSONResponse(content=error_response(exc.message), status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        content=error_response(_detail_message(exc.detail)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Report the first failing field; clients only need a readable reason.
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return JSONResponse(content=error_response(message), status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the traceback goes to the log only.
    logger.exception(
        "unhandled_exception path=%s request_id=%s",
        request.url.path,
        get_request_id(request),
    )
    return JSONResponse(content=error_response("Internal server error"), status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TeamhubError, teamhub_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
