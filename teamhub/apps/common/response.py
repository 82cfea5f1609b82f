from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str


def get_request_id(request: Request) -> str:
    # Reuse the middleware-assigned id, then the inbound header, then generate.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def success_response(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def error_response(message: str) -> dict[str, Any]:
    return ErrorEnvelope(error=message).model_dump()
