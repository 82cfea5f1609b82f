"""Message writes shared by the chat HTTP routes and socket events.

Every send persists through the chat store, broadcasts to the scope's room and,
for direct messages, runs the best-effort recipient notification chain. The
socket handlers registered here take the sender from the connection's
``user:online`` identity, never from the payload.
"""

from __future__ import annotations

import logging
from typing import Any

from teamhub.apps.chat.store import InMemoryChatStore
from teamhub.core.errors import ForbiddenError, InvalidRequestError, NotFoundError, UpstreamHTTPError
from teamhub.services.realtime.hub import Connection, RealtimeHub, SocketEventError
from teamhub.services.realtime.rooms import room_name
from teamhub.services.service_apis import ServiceAPIs
from teamhub.services.side_effects import SideEffectChain


logger = logging.getLogger(__name__)

# Preview length carried by dm:notification events.
PREVIEW_CHARS = 50
MAX_CONTENT_CHARS = 4000


def clean_content(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        raise InvalidRequestError("Message content is required")
    if len(content) > MAX_CONTENT_CHARS:
        raise InvalidRequestError(f"Message content exceeds {MAX_CONTENT_CHARS} characters")
    return content.strip()


def _payload_id(data: Any, key: str) -> str:
    value = data.get(key) if isinstance(data, dict) else None
    if not isinstance(value, str) or not value:
        raise SocketEventError(f"payload requires {key}")
    return value


class ChatMessaging:
    def __init__(self, *, store: InMemoryChatStore, hub: RealtimeHub, apis: ServiceAPIs) -> None:
        self._store = store
        self._hub = hub
        self._apis = apis

    async def require_team_member(self, team_id: str, user_id: str) -> None:
        # Peer failures propagate as UpstreamUnavailableError (500); only a clear "no" is a 403.
        if not await self._apis.teams.is_user_in_team(team_id, user_id):
            raise ForbiddenError("You are not a member of this team")

    async def project_team_id(self, project_id: str) -> str:
        try:
            project = await self._apis.projects.get_project(project_id)
        except UpstreamHTTPError as exc:
            if exc.status_code == 404:
                raise NotFoundError("Project not found") from exc
            raise
        team_id = project.get("teamId") if isinstance(project, dict) else None
        if not team_id:
            raise NotFoundError("Project not found")
        return str(team_id)

    async def send_direct_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        *,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        conversation = self._store.require_participant(conversation_id, sender_id)
        message = self._store.add_direct_message(conversation, sender_id, clean_content(content))
        data = message.to_dict()
        await self._hub.emit_to_room(room_name("conversation", conversation_id), "dm:new", {"message": data})

        recipient_id = conversation.other_participant(sender_id)
        chain = SideEffectChain(
            "dm_sent",
            context={"conversation_id": conversation_id, "message_id": message.id, "request_id": request_id},
        )
        chain.add(
            "notify_recipient",
            lambda: self._hub.emit_to_room(
                room_name("user", recipient_id),
                "dm:notification",
                {
                    "conversationId": conversation_id,
                    "senderId": sender_id,
                    "preview": message.content[:PREVIEW_CHARS],
                },
            ),
        )
        await chain.run()
        return data

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        self._store.require_participant(conversation_id, reader_id)
        changed = self._store.mark_read(conversation_id, reader_id)
        await self._hub.emit_to_room(
            room_name("conversation", conversation_id),
            "dm:read",
            {"conversationId": conversation_id, "readBy": reader_id},
        )
        return changed

    async def send_project_message(self, project_id: str, user_id: str, content: str) -> dict[str, Any]:
        text = clean_content(content)
        await self.require_team_member(await self.project_team_id(project_id), user_id)
        message = self._store.add_channel_message("project", project_id, user_id, text)
        data = message.to_dict()
        await self._hub.emit_to_room(room_name("project", project_id), "message:new", data)
        return data

    async def send_team_message(self, team_id: str, user_id: str, content: str) -> dict[str, Any]:
        text = clean_content(content)
        await self.require_team_member(team_id, user_id)
        message = self._store.add_channel_message("team", team_id, user_id, text)
        data = message.to_dict()
        await self._hub.emit_to_room(room_name("team", team_id), "team:message:new", data)
        logger.debug("team_message_sent team_id=%s message_id=%s", team_id, message.id)
        return data

    def register_socket_events(self) -> None:
        self._hub.on("message:send", self._on_message_send, failure_message="Failed to send message")
        self._hub.on("dm:send", self._on_dm_send, failure_message="Failed to send direct message")
        self._hub.on("dm:read", self._on_dm_read, failure_message="Failed to mark messages as read")

    def _sender(self, connection: Connection, data: Any) -> str:
        user_id = self._hub.user_of(connection.id)
        if user_id is None:
            raise SocketEventError("announce user:online before sending")
        claimed = (data.get("userId") or data.get("senderId")) if isinstance(data, dict) else None
        if claimed is not None and claimed != user_id:
            raise SocketEventError("payload user does not match this connection")
        return user_id

    async def _on_message_send(self, connection: Connection, data: Any) -> None:
        sender_id = self._sender(connection, data)
        await self.send_project_message(_payload_id(data, "projectId"), sender_id, data.get("content"))

    async def _on_dm_send(self, connection: Connection, data: Any) -> None:
        sender_id = self._sender(connection, data)
        await self.send_direct_message(_payload_id(data, "conversationId"), sender_id, data.get("content"))

    async def _on_dm_read(self, connection: Connection, data: Any) -> None:
        reader_id = self._sender(connection, data)
        await self.mark_read(_payload_id(data, "conversationId"), reader_id)
