from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel

from teamhub.apps.common.response import success_response
from teamhub.apps.common.trust import RequestContext, get_request_context, require_internal_api_key
from teamhub.apps.users.store import InMemoryUserStore
from teamhub.core.errors import InvalidRequestError, NotFoundError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])
internal_router = APIRouter(
    prefix="/internal/users",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_key)],
)


class SyncUserRequest(BaseModel):
    email: str | None = None
    name: str | None = None


class BatchUsersRequest(BaseModel):
    userIds: list[str]


def get_user_store(request: Request) -> InMemoryUserStore:
    return request.app.state.user_store


@router.post("/sync")
async def sync_user(
    payload: SyncUserRequest,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryUserStore = Depends(get_user_store),
) -> dict:
    # Registration: the gateway bootstrapped the principal from the provider token.
    external_id = context.external_id or context.user_id
    email = payload.email or context.email
    if not email:
        raise InvalidRequestError("email is required")
    record, created = store.upsert(external_id=external_id, email=email, name=payload.name or context.name)
    if created:
        response.status_code = status.HTTP_201_CREATED
        logger.info("user_created user_id=%s external_id=%s", record.id, external_id)
    return success_response(record.to_dict())


@router.get("/me")
async def get_me(
    context: RequestContext = Depends(get_request_context),
    store: InMemoryUserStore = Depends(get_user_store),
) -> dict:
    record = store.get(context.user_id)
    if record is None:
        raise NotFoundError("User not found")
    return success_response(record.to_dict())


@internal_router.get("/by-external-id/{external_id}")
async def get_user_by_external_id(external_id: str, store: InMemoryUserStore = Depends(get_user_store)) -> dict:
    record = store.get_by_external_id(external_id)
    if record is None:
        raise NotFoundError("User not found")
    return success_response(record.to_dict())


@internal_router.post("/batch")
async def get_users(payload: BatchUsersRequest, store: InMemoryUserStore = Depends(get_user_store)) -> dict:
    return success_response([record.to_dict() for record in store.get_many(payload.userIds)])


@internal_router.get("/{user_id}")
async def get_user(user_id: str, store: InMemoryUserStore = Depends(get_user_store)) -> dict:
    record = store.get(user_id)
    if record is None:
        raise NotFoundError("User not found")
    return success_response(record.to_dict())
