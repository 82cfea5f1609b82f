from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class NotificationRecord:
    id: str
    userId: str
    type: str
    title: str
    message: str
    read: bool = False
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InMemoryNotificationStore:
    def __init__(self) -> None:
        self._items: dict[str, NotificationRecord] = {}

    def create(self, *, user_id: str, type: str, title: str, message: str) -> NotificationRecord:
        record = NotificationRecord(id=str(uuid4()), userId=user_id, type=type, title=title, message=message)
        self._items[record.id] = record
        return record

    def get(self, notification_id: str) -> NotificationRecord | None:
        return self._items.get(notification_id)

    def for_user(self, user_id: str, *, unread_only: bool = False) -> list[NotificationRecord]:
        # Newest first.
        records = [
            record
            for record in self._items.values()
            if record.userId == user_id and not (unread_only and record.read)
        ]
        return sorted(records, key=lambda record: record.createdAt, reverse=True)
