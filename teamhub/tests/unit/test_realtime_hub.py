from __future__ import annotations

from typing import Any

import pytest

from teamhub.services.realtime.backplane import BackplaneMessage, InMemoryBus
from teamhub.services.realtime.hub import RealtimeHub


class FakeConnection:
    def __init__(self, connection_id: str) -> None:
        self.id = connection_id
        self.received: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> None:
        self.received.append((event, data))

    def events(self, name: str) -> list[Any]:
        return [data for event, data in self.received if event == name]


class DeadConnection(FakeConnection):
    async def send(self, event: str, data: Any) -> None:
        raise RuntimeError("socket closed")


async def _connect(hub: RealtimeHub, connection_id: str, user_id: str | None = None) -> FakeConnection:
    connection = FakeConnection(connection_id)
    hub.register(connection)
    if user_id is not None:
        await hub.handle(connection, "user:online", user_id)
    return connection


@pytest.mark.asyncio
async def test_online_broadcast_only_on_first_connection() -> None:
    hub = RealtimeHub()
    observer = await _connect(hub, "observer")
    await _connect(hub, "c-1", "u-1")
    await _connect(hub, "c-2", "u-1")
    assert observer.events("user:status") == [{"userId": "u-1", "online": True}]


@pytest.mark.asyncio
async def test_offline_broadcast_exactly_once_on_last_disconnect() -> None:
    hub = RealtimeHub()
    observer = await _connect(hub, "observer")
    first = await _connect(hub, "c-1", "u-1")
    second = await _connect(hub, "c-2", "u-1")

    await hub.unregister(first)
    assert hub.presence.is_online("u-1") is True
    await hub.unregister(second)
    assert hub.presence.is_online("u-1") is False
    assert observer.events("user:status") == [
        {"userId": "u-1", "online": True},
        {"userId": "u-1", "online": False},
    ]


@pytest.mark.asyncio
async def test_room_broadcast_reaches_only_joined_connections() -> None:
    hub = RealtimeHub()
    in_a = await _connect(hub, "c-a")
    in_b = await _connect(hub, "c-b")
    nowhere = await _connect(hub, "c-none")
    await hub.handle(in_a, "join:conversation", "A")
    await hub.handle(in_b, "join:conversation", {"conversationId": "B"})

    await hub.emit_to_room("conversation:A", "dm:new", {"message": {"id": "m-1"}})
    assert in_a.events("dm:new") == [{"message": {"id": "m-1"}}]
    assert in_b.events("dm:new") == []
    assert nowhere.events("dm:new") == []


@pytest.mark.asyncio
async def test_leave_stops_delivery() -> None:
    hub = RealtimeHub()
    connection = await _connect(hub, "c-1")
    await hub.handle(connection, "join:team", "T1")
    await hub.handle(connection, "leave:team", "T1")
    await hub.emit_to_room("team:T1", "team:message:new", {"id": "m-1"})
    assert connection.events("team:message:new") == []


@pytest.mark.asyncio
async def test_typing_excludes_sender() -> None:
    hub = RealtimeHub()
    sender = await _connect(hub, "c-1", "u-1")
    peer = await _connect(hub, "c-2", "u-2")
    for connection in (sender, peer):
        await hub.handle(connection, "join:project", "p-1")

    await hub.handle(sender, "typing:start", {"projectId": "p-1", "userId": "u-1"})
    assert peer.events("typing:user") == [{"userId": "u-1", "isTyping": True}]
    assert sender.events("typing:user") == []

    for connection in (sender, peer):
        await hub.handle(connection, "join:conversation", "c-9")
    await hub.handle(sender, "dm:typing:stop", {"conversationId": "c-9", "userId": "u-1"})
    assert peer.events("dm:typing") == [{"userId": "u-1", "isTyping": False}]


@pytest.mark.asyncio
async def test_online_check_reports_each_user() -> None:
    hub = RealtimeHub()
    asker = await _connect(hub, "c-1", "u-1")
    await hub.handle(asker, "users:online:check", ["u-1", "u-2"])
    assert asker.events("users:online:status") == [
        [{"userId": "u-1", "online": True}, {"userId": "u-2", "online": False}]
    ]


@pytest.mark.asyncio
async def test_invalid_events_answer_with_error() -> None:
    hub = RealtimeHub()
    connection = await _connect(hub, "c-1", "u-1")
    await hub.handle(connection, "nope", None)
    await hub.handle(connection, "join:channel", "x")
    await hub.handle(connection, "typing:start", "p-1")
    await hub.handle(connection, "join:user", "u-2")
    assert len(connection.events("error")) == 4
    assert "user:u-2" not in hub.rooms.rooms_of("c-1")


@pytest.mark.asyncio
async def test_dead_connection_does_not_stop_fan_out() -> None:
    hub = RealtimeHub()
    dead = DeadConnection("c-dead")
    hub.register(dead)
    await hub.handle(dead, "join:team", "T1")
    alive = await _connect(hub, "c-alive")
    await hub.handle(alive, "join:team", "T1")
    await hub.emit_to_room("team:T1", "team:message:new", {"id": "m-1"})
    assert alive.events("team:message:new") == [{"id": "m-1"}]


@pytest.mark.asyncio
async def test_backplane_relays_between_hubs_and_ignores_own_echo() -> None:
    bus = InMemoryBus()
    node_a = RealtimeHub(backplane=bus.backplane(), node_id="node-a")
    node_b = RealtimeHub(backplane=bus.backplane(), node_id="node-b")
    await node_a.start()
    await node_b.start()

    on_a = await _connect(node_a, "c-a")
    on_b = await _connect(node_b, "c-b")
    await node_a.handle(on_a, "join:team", "T1")
    await node_b.handle(on_b, "join:team", "T1")

    await node_a.emit_to_room("team:T1", "team:message:new", {"id": "m-1"})
    assert on_a.events("team:message:new") == [{"id": "m-1"}]
    assert on_b.events("team:message:new") == [{"id": "m-1"}]

    # Presence changes on one node are announced on every node.
    await node_b.handle(on_b, "user:online", "u-2")
    assert on_a.events("user:status") == [{"userId": "u-2", "online": True}]

    await node_a.stop()
    await node_b.stop()


def test_backplane_message_round_trip_and_validation() -> None:
    message = BackplaneMessage(origin="n", event="dm:new", data={"x": 1}, room="conversation:A", exclude="c-1")
    assert BackplaneMessage.from_json(message.to_json()) == message
    with pytest.raises(ValueError):
        BackplaneMessage.from_json('{"event": "x"}')
