from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from teamhub.core.errors import ConflictError, NotFoundError


TEAM_ROLES = ("OWNER", "ADMIN", "MEMBER")
MANAGER_ROLES = frozenset({"OWNER", "ADMIN"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TeamRecord:
    id: str
    name: str
    ownerId: str
    description: str | None = None
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MemberRecord:
    teamId: str
    userId: str
    role: str = "MEMBER"
    joinedAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InMemoryTeamStore:
    def __init__(self) -> None:
        self._teams: dict[str, TeamRecord] = {}
        self._members: dict[str, dict[str, MemberRecord]] = {}

    def create_team(self, *, name: str, owner_id: str, description: str | None = None) -> TeamRecord:
        team = TeamRecord(id=str(uuid4()), name=name, ownerId=owner_id, description=description)
        self._teams[team.id] = team
        self._members[team.id] = {owner_id: MemberRecord(teamId=team.id, userId=owner_id, role="OWNER")}
        return team

    def get_team(self, team_id: str) -> TeamRecord | None:
        return self._teams.get(team_id)

    def require_team(self, team_id: str) -> TeamRecord:
        team = self._teams.get(team_id)
        if team is None:
            raise NotFoundError("Team not found")
        return team

    def teams_for(self, user_id: str) -> list[TeamRecord]:
        return [
            self._teams[team_id]
            for team_id, members in self._members.items()
            if user_id in members
        ]

    def members(self, team_id: str) -> list[MemberRecord]:
        return list(self._members.get(team_id, {}).values())

    def membership(self, team_id: str, user_id: str) -> MemberRecord | None:
        return self._members.get(team_id, {}).get(user_id)

    def add_member(self, team_id: str, user_id: str, role: str = "MEMBER") -> MemberRecord:
        self.require_team(team_id)
        members = self._members.setdefault(team_id, {})
        if user_id in members:
            raise ConflictError("User is already a member of this team")
        member = MemberRecord(teamId=team_id, userId=user_id, role=role)
        members[user_id] = member
        return member
