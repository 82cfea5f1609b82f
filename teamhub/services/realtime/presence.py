from __future__ import annotations


class OnlineUserRegistry:
    """Process-local map of user id -> live connection ids.

    A user is online iff their set is non-empty; empty sets are removed
    immediately. Other processes learn about transitions only through the
    backplane events the hub emits.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[str]] = {}

    def add(self, user_id: str, connection_id: str) -> bool:
        # Returns True when this is the user's first live connection.
        connections = self._connections.get(user_id)
        if connections is None:
            self._connections[user_id] = {connection_id}
            return True
        connections.add(connection_id)
        return False

    def remove(self, user_id: str, connection_id: str) -> bool:
        # Returns True when the user just lost their last connection.
        connections = self._connections.get(user_id)
        if connections is None or connection_id not in connections:
            return False
        connections.discard(connection_id)
        if connections:
            return False
        del self._connections[user_id]
        return True

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    def online_users(self) -> list[str]:
        return sorted(self._connections)
