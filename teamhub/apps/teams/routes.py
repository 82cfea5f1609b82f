from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field

from teamhub.apps.common.response import success_response
from teamhub.apps.common.runtime import OutboundRuntime
from teamhub.apps.common.trust import RequestContext, get_request_context, require_internal_api_key
from teamhub.apps.teams.store import MANAGER_ROLES, InMemoryTeamStore
from teamhub.core.errors import ForbiddenError
from teamhub.services.side_effects import SideEffectChain


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["teams"])
internal_router = APIRouter(
    prefix="/internal/teams",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_key)],
)


class CreateTeamRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None


class AddMemberRequest(BaseModel):
    userId: str = Field(min_length=1)
    role: Literal["ADMIN", "MEMBER"] = "MEMBER"


def get_team_store(request: Request) -> InMemoryTeamStore:
    return request.app.state.team_store


def get_runtime(request: Request) -> OutboundRuntime:
    return request.app.state.runtime


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: CreateTeamRequest,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryTeamStore = Depends(get_team_store),
) -> dict:
    team = store.create_team(name=payload.name, owner_id=context.user_id, description=payload.description)
    logger.info("team_created team_id=%s owner=%s", team.id, context.user_id)
    return success_response(team.to_dict())


@router.get("")
async def list_teams(
    context: RequestContext = Depends(get_request_context),
    store: InMemoryTeamStore = Depends(get_team_store),
) -> dict:
    return success_response([team.to_dict() for team in store.teams_for(context.user_id)])


@router.get("/{team_id}")
async def get_team(
    team_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryTeamStore = Depends(get_team_store),
) -> dict:
    team = store.require_team(team_id)
    if store.membership(team_id, context.user_id) is None:
        raise ForbiddenError("You are not a member of this team")
    payload = team.to_dict()
    payload["members"] = [member.to_dict() for member in store.members(team_id)]
    return success_response(payload)


@router.post("/{team_id}/members")
async def add_member(
    team_id: str,
    payload: AddMemberRequest,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryTeamStore = Depends(get_team_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    team = store.require_team(team_id)
    caller = store.membership(team_id, context.user_id)
    if caller is None or caller.role not in MANAGER_ROLES:
        raise ForbiddenError("Only team admins can add members")
    member = store.add_member(team_id, payload.userId, payload.role)
    response.status_code = status.HTTP_201_CREATED
    logger.info("team_member_added team_id=%s user_id=%s by=%s", team_id, payload.userId, context.user_id)

    # The membership is committed; follow-ups are best effort.
    chain = SideEffectChain(
        "team_member_added",
        context={"team_id": team_id, "user_id": payload.userId, "request_id": context.request_id},
    )
    chain.add("invalidate_membership_cache", lambda: runtime.apis.teams.invalidate_membership(team_id))
    chain.add(
        "notify_member",
        lambda: runtime.apis.notifications.create_notification(
            user_id=payload.userId,
            type="TEAM_MEMBER_ADDED",
            title="Added to team",
            message=f"You were added to {team.name}",
        ),
    )
    await chain.run()
    return success_response(member.to_dict())


@internal_router.get("/{team_id}")
async def internal_get_team(team_id: str, store: InMemoryTeamStore = Depends(get_team_store)) -> dict:
    return success_response(store.require_team(team_id).to_dict())


@internal_router.get("/{team_id}/members")
async def internal_get_members(team_id: str, store: InMemoryTeamStore = Depends(get_team_store)) -> dict:
    store.require_team(team_id)
    return success_response([member.to_dict() for member in store.members(team_id)])


@internal_router.get("/{team_id}/check-member/{user_id}")
async def internal_check_member(
    team_id: str,
    user_id: str,
    store: InMemoryTeamStore = Depends(get_team_store),
) -> dict:
    return success_response({"isMember": store.membership(team_id, user_id) is not None})
