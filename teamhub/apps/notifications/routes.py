from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from teamhub.apps.common.response import success_response
from teamhub.apps.common.trust import RequestContext, get_request_context, require_internal_api_key
from teamhub.apps.notifications.store import InMemoryNotificationStore
from teamhub.core.errors import ForbiddenError, NotFoundError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
internal_router = APIRouter(
    prefix="/internal/notifications",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_key)],
)


class CreateNotificationRequest(BaseModel):
    userId: str = Field(min_length=1)
    type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    message: str


def get_notification_store(request: Request) -> InMemoryNotificationStore:
    return request.app.state.notification_store


@router.get("")
async def list_notifications(
    unread: bool = False,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryNotificationStore = Depends(get_notification_store),
) -> dict:
    records = store.for_user(context.user_id, unread_only=unread)
    return success_response([record.to_dict() for record in records])


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryNotificationStore = Depends(get_notification_store),
) -> dict:
    record = store.get(notification_id)
    if record is None:
        raise NotFoundError("Notification not found")
    if record.userId != context.user_id:
        raise ForbiddenError("Not your notification")
    record.read = True
    return success_response(record.to_dict())


@internal_router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: CreateNotificationRequest,
    store: InMemoryNotificationStore = Depends(get_notification_store),
) -> dict:
    record = store.create(
        user_id=payload.userId,
        type=payload.type,
        title=payload.title,
        message=payload.message,
    )
    logger.info("notification_created id=%s user_id=%s type=%s", record.id, record.userId, record.type)
    return success_response(record.to_dict())


@internal_router.get("/user/{user_id}")
async def list_user_notifications(
    user_id: str,
    unread: bool = False,
    store: InMemoryNotificationStore = Depends(get_notification_store),
) -> dict:
    return success_response([record.to_dict() for record in store.for_user(user_id, unread_only=unread)])
