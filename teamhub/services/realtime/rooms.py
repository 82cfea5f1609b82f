from __future__ import annotations


ROOM_KINDS = ("conversation", "project", "team", "user")


def room_name(kind: str, target_id: str) -> str:
    if kind not in ROOM_KINDS:
        raise ValueError(f"unknown room kind: {kind}")
    if not target_id:
        raise ValueError("room id must not be empty")
    return f"{kind}:{target_id}"


class RoomRegistry:
    # Connection-scoped membership; nothing survives a reconnect.

    def __init__(self) -> None:
        self._members: dict[str, set[str]] = {}
        self._rooms_by_connection: dict[str, set[str]] = {}

    def join(self, connection_id: str, room: str) -> None:
        self._members.setdefault(room, set()).add(connection_id)
        self._rooms_by_connection.setdefault(connection_id, set()).add(room)

    def leave(self, connection_id: str, room: str) -> None:
        members = self._members.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._members[room]
        rooms = self._rooms_by_connection.get(connection_id)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                del self._rooms_by_connection[connection_id]

    def leave_all(self, connection_id: str) -> set[str]:
        rooms = self._rooms_by_connection.pop(connection_id, set())
        for room in rooms:
            members = self._members.get(room)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._members[room]
        return rooms

    def members(self, room: str) -> frozenset[str]:
        return frozenset(self._members.get(room, ()))

    def rooms_of(self, connection_id: str) -> frozenset[str]:
        return frozenset(self._rooms_by_connection.get(connection_id, ()))
