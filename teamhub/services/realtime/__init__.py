from teamhub.services.realtime.backplane import (
    Backplane,
    BackplaneMessage,
    InMemoryBackplane,
    InMemoryBus,
    LocalBackplane,
    RedisBackplane,
)
from teamhub.services.realtime.hub import Connection, RealtimeHub, SocketEventError
from teamhub.services.realtime.presence import OnlineUserRegistry
from teamhub.services.realtime.rooms import ROOM_KINDS, RoomRegistry, room_name

__all__ = [
    "Backplane",
    "BackplaneMessage",
    "InMemoryBackplane",
    "InMemoryBus",
    "LocalBackplane",
    "RedisBackplane",
    "Connection",
    "RealtimeHub",
    "SocketEventError",
    "OnlineUserRegistry",
    "ROOM_KINDS",
    "RoomRegistry",
    "room_name",
]
