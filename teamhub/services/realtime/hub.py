"""Presence, rooms and event fan-out for chat socket connections.

One hub per process. Local connections receive events directly; the same
event is published on the backplane so hubs in other processes deliver it to
their own connections. Hubs ignore their own backplane echoes.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from teamhub.core.errors import TeamhubError, UpstreamHTTPError
from teamhub.services.realtime.backplane import Backplane, BackplaneMessage, LocalBackplane
from teamhub.services.realtime.presence import OnlineUserRegistry
from teamhub.services.realtime.rooms import ROOM_KINDS, RoomRegistry, room_name


logger = logging.getLogger(__name__)


class Connection(Protocol):
    id: str

    async def send(self, event: str, data: Any) -> None: ...


class SocketEventError(ValueError):
    # Client sent an unknown event or an unusable payload.
    pass


EventHandler = Callable[[Connection, Any], Awaitable[None]]


def _string_arg(data: Any, *keys: str) -> str:
    # Clients send either a bare id or an object carrying it.
    if isinstance(data, str) and data:
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    raise SocketEventError(f"expected {' or '.join(keys)}")


def _typing_payload(data: Any, scope_key: str) -> tuple[str, str]:
    if not isinstance(data, dict):
        raise SocketEventError("typing payload must be an object")
    scope_id = data.get(scope_key)
    user_id = data.get("userId")
    if not isinstance(scope_id, str) or not scope_id or not isinstance(user_id, str) or not user_id:
        raise SocketEventError(f"typing payload requires {scope_key} and userId")
    return scope_id, user_id


class RealtimeHub:
    def __init__(
        self,
        *,
        presence: OnlineUserRegistry | None = None,
        rooms: RoomRegistry | None = None,
        backplane: Backplane | None = None,
        node_id: str | None = None,
    ) -> None:
        self.presence = presence or OnlineUserRegistry()
        self.rooms = rooms or RoomRegistry()
        self._backplane: Backplane = backplane or LocalBackplane()
        self.node_id = node_id or uuid4().hex
        self._connections: dict[str, Connection] = {}
        self._users_by_connection: dict[str, str] = {}
        self._handlers: dict[str, tuple[EventHandler, str]] = {}

    async def start(self) -> None:
        await self._backplane.start(self._on_backplane_message)

    async def stop(self) -> None:
        await self._backplane.aclose()

    async def fall_back_to_local(self) -> None:
        # Drop a backplane that failed to start; presence, rooms and sockets are kept.
        try:
            await self._backplane.aclose()
        except Exception as exc:  # noqa: BLE001 - the failed backplane is discarded either way
            logger.warning("backplane_close_failed node=%s error=%s", self.node_id, type(exc).__name__)
        self._backplane = LocalBackplane()
        await self._backplane.start(self._on_backplane_message)

    def on(self, event: str, handler: EventHandler, *, failure_message: str) -> None:
        """Register an application event such as ``message:send``.

        Handlers raise ``SocketEventError`` for unusable payloads and
        ``TeamhubError`` for domain failures; 4xx errors are reported with
        their own message, anything else with ``failure_message``.
        """
        self._handlers[event] = (handler, failure_message)

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        logger.info("socket_connected connection=%s node=%s", connection.id, self.node_id)

    async def unregister(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)
        self.rooms.leave_all(connection.id)
        user_id = self._users_by_connection.pop(connection.id, None)
        logger.info("socket_disconnected connection=%s user=%s", connection.id, user_id)
        if user_id is not None and self.presence.remove(user_id, connection.id):
            await self.emit_all("user:status", {"userId": user_id, "online": False})

    def user_of(self, connection_id: str) -> str | None:
        return self._users_by_connection.get(connection_id)

    async def handle(self, connection: Connection, event: str, data: Any) -> None:
        # Dispatch one client event; payload problems are reported back on the socket.
        try:
            await self._dispatch(connection, event, data)
        except SocketEventError as exc:
            logger.info("socket_event_rejected connection=%s event=%s reason=%s", connection.id, event, exc)
            await self._send(connection, "error", {"message": str(exc), "event": event})
        except TeamhubError as exc:
            _handler, failure_message = self._handlers.get(event, (None, "Request failed"))
            public = exc.status_code < 500 and not isinstance(exc, UpstreamHTTPError)
            message = exc.message if public else failure_message
            logger.warning(
                "socket_event_failed connection=%s event=%s status=%s error=%s",
                connection.id,
                event,
                exc.status_code,
                type(exc).__name__,
            )
            await self._send(connection, "error", {"message": message, "event": event})

    async def _dispatch(self, connection: Connection, event: str, data: Any) -> None:
        registered = self._handlers.get(event)
        if registered is not None:
            await registered[0](connection, data)
            return
        if event == "user:online":
            await self._user_online(connection, _string_arg(data, "userId"))
            return
        if event == "users:online:check":
            if not isinstance(data, list):
                raise SocketEventError("expected a list of user ids")
            statuses = [
                {"userId": user_id, "online": self.presence.is_online(str(user_id))}
                for user_id in data
            ]
            await self._send(connection, "users:online:status", statuses)
            return
        if event in ("typing:start", "typing:stop"):
            project_id, user_id = _typing_payload(data, "projectId")
            await self.emit_to_room(
                room_name("project", project_id),
                "typing:user",
                {"userId": user_id, "isTyping": event == "typing:start"},
                exclude=connection.id,
            )
            return
        if event in ("dm:typing:start", "dm:typing:stop"):
            conversation_id, user_id = _typing_payload(data, "conversationId")
            await self.emit_to_room(
                room_name("conversation", conversation_id),
                "dm:typing",
                {"userId": user_id, "isTyping": event == "dm:typing:start"},
                exclude=connection.id,
            )
            return
        action, _, kind = event.partition(":")
        if action in ("join", "leave") and kind in ROOM_KINDS:
            target_id = _string_arg(data, f"{kind}Id", "id")
            if kind == "user" and target_id != self._users_by_connection.get(connection.id):
                raise SocketEventError("connections may only join their own user room")
            room = room_name(kind, target_id)
            if action == "join":
                self.rooms.join(connection.id, room)
            else:
                self.rooms.leave(connection.id, room)
            logger.debug("socket_room_%s connection=%s room=%s", action, connection.id, room)
            return
        raise SocketEventError("unknown event")

    async def _user_online(self, connection: Connection, user_id: str) -> None:
        previous = self._users_by_connection.get(connection.id)
        if previous is not None and previous != user_id:
            self.rooms.leave(connection.id, room_name("user", previous))
            if self.presence.remove(previous, connection.id):
                await self.emit_all("user:status", {"userId": previous, "online": False})
        self._users_by_connection[connection.id] = user_id
        self.rooms.join(connection.id, room_name("user", user_id))
        if self.presence.add(user_id, connection.id):
            await self.emit_all("user:status", {"userId": user_id, "online": True})

    async def emit_to_room(self, room: str, event: str, data: Any, *, exclude: str | None = None) -> None:
        await self._deliver_local(event, data, room=room, exclude=exclude)
        await self._backplane.publish(
            BackplaneMessage(origin=self.node_id, event=event, data=data, room=room, exclude=exclude)
        )

    async def emit_all(self, event: str, data: Any) -> None:
        await self._deliver_local(event, data, room=None, exclude=None)
        await self._backplane.publish(BackplaneMessage(origin=self.node_id, event=event, data=data))

    async def _on_backplane_message(self, message: BackplaneMessage) -> None:
        if message.origin == self.node_id:
            return
        await self._deliver_local(message.event, message.data, room=message.room, exclude=message.exclude)

    async def _deliver_local(self, event: str, data: Any, *, room: str | None, exclude: str | None) -> None:
        if room is None:
            targets = list(self._connections)
        else:
            targets = list(self.rooms.members(room))
        for connection_id in targets:
            if connection_id == exclude:
                continue
            connection = self._connections.get(connection_id)
            if connection is not None:
                await self._send(connection, event, data)

    async def _send(self, connection: Connection, event: str, data: Any) -> None:
        try:
            await connection.send(event, data)
        except Exception as exc:  # noqa: BLE001 - one dead socket must not stop the fan-out
            logger.warning(
                "socket_send_failed connection=%s event=%s error=%s",
                connection.id,
                event,
                type(exc).__name__,
            )
