from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field

from teamhub.apps.chat.messaging import MAX_CONTENT_CHARS, ChatMessaging
from teamhub.apps.chat.store import InMemoryChatStore
from teamhub.apps.common.response import success_response
from teamhub.apps.common.trust import RequestContext, get_request_context


router = APIRouter(prefix="/api/chat", tags=["chat"])


class StartConversationRequest(BaseModel):
    participantId: str = Field(min_length=1)


class SendMessageRequest(BaseModel):
    content: str = Field(max_length=MAX_CONTENT_CHARS)


def get_chat_store(request: Request) -> InMemoryChatStore:
    return request.app.state.chat_store


def get_messaging(request: Request) -> ChatMessaging:
    return request.app.state.messaging


@router.get("/conversations")
async def list_conversations(
    context: RequestContext = Depends(get_request_context),
    store: InMemoryChatStore = Depends(get_chat_store),
) -> dict:
    return success_response([conversation.to_dict() for conversation in store.conversations_for(context.user_id)])


@router.get("/conversations/unread")
async def unread_count(
    context: RequestContext = Depends(get_request_context),
    store: InMemoryChatStore = Depends(get_chat_store),
) -> dict:
    return success_response({"count": store.unread_count(context.user_id)})


@router.post("/conversations/start")
async def start_conversation(
    payload: StartConversationRequest,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryChatStore = Depends(get_chat_store),
) -> dict:
    conversation, created = store.start_conversation(context.user_id, payload.participantId)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return success_response(conversation.to_dict())


@router.get("/conversations/{conversation_id}/messages")
async def get_direct_messages(
    conversation_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryChatStore = Depends(get_chat_store),
) -> dict:
    store.require_participant(conversation_id, context.user_id)
    return success_response([message.to_dict() for message in store.direct_messages(conversation_id)])


@router.post("/conversations/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_direct_message(
    conversation_id: str,
    payload: SendMessageRequest,
    context: RequestContext = Depends(get_request_context),
    messaging: ChatMessaging = Depends(get_messaging),
) -> dict:
    data = await messaging.send_direct_message(
        conversation_id,
        context.user_id,
        payload.content,
        request_id=context.request_id,
    )
    return success_response(data)


@router.post("/conversations/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: str,
    context: RequestContext = Depends(get_request_context),
    messaging: ChatMessaging = Depends(get_messaging),
) -> dict:
    changed = await messaging.mark_read(conversation_id, context.user_id)
    return success_response({"conversationId": conversation_id, "marked": changed})


@router.get("/projects/{project_id}/messages")
async def get_project_messages(
    project_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryChatStore = Depends(get_chat_store),
    messaging: ChatMessaging = Depends(get_messaging),
) -> dict:
    team_id = await messaging.project_team_id(project_id)
    await messaging.require_team_member(team_id, context.user_id)
    return success_response([message.to_dict() for message in store.channel_messages("project", project_id)])


@router.post("/projects/{project_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_project_message(
    project_id: str,
    payload: SendMessageRequest,
    context: RequestContext = Depends(get_request_context),
    messaging: ChatMessaging = Depends(get_messaging),
) -> dict:
    return success_response(await messaging.send_project_message(project_id, context.user_id, payload.content))


@router.get("/teams/{team_id}/messages")
async def get_team_messages(
    team_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryChatStore = Depends(get_chat_store),
    messaging: ChatMessaging = Depends(get_messaging),
) -> dict:
    await messaging.require_team_member(team_id, context.user_id)
    return success_response([message.to_dict() for message in store.channel_messages("team", team_id)])


@router.post("/teams/{team_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_team_message(
    team_id: str,
    payload: SendMessageRequest,
    context: RequestContext = Depends(get_request_context),
    messaging: ChatMessaging = Depends(get_messaging),
) -> dict:
    return success_response(await messaging.send_team_message(team_id, context.user_id, payload.content))
