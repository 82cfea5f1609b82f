from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from teamhub.core.errors import ConflictError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UserRecord:
    id: str
    externalId: str
    email: str
    name: str | None = None
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InMemoryUserStore:
    # Stand-in for the user database; keyed by internal id and external id.

    def __init__(self) -> None:
        self._by_id: dict[str, UserRecord] = {}
        self._by_external_id: dict[str, str] = {}

    def get(self, user_id: str) -> UserRecord | None:
        return self._by_id.get(user_id)

    def get_by_external_id(self, external_id: str) -> UserRecord | None:
        user_id = self._by_external_id.get(external_id)
        return self._by_id.get(user_id) if user_id else None

    def get_many(self, user_ids: list[str]) -> list[UserRecord]:
        return [self._by_id[user_id] for user_id in user_ids if user_id in self._by_id]

    def upsert(self, *, external_id: str, email: str, name: str | None) -> tuple[UserRecord, bool]:
        # Returns (record, created); email stays unique across users.
        for record in self._by_id.values():
            if record.email == email and record.externalId != external_id:
                raise ConflictError("Email already registered")
        existing = self.get_by_external_id(external_id)
        if existing is not None:
            existing.email = email
            existing.name = name or existing.name
            return existing, False
        record = UserRecord(id=str(uuid4()), externalId=external_id, email=email, name=name)
        self._by_id[record.id] = record
        self._by_external_id[external_id] = record.id
        return record, True
