from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, model_validator

from teamhub.apps.common.response import success_response
from teamhub.apps.common.runtime import OutboundRuntime
from teamhub.apps.common.trust import RequestContext, get_request_context, require_internal_api_key
from teamhub.apps.projects.store import RECENT_EDITS, InMemoryProjectStore
from teamhub.core.errors import ForbiddenError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])
internal_router = APIRouter(
    prefix="/internal/projects",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_key)],
)


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    teamId: str = Field(min_length=1)
    description: str | None = None


class CreateDocumentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = ""


class UpdateDocumentRequest(BaseModel):
    content: str
    startPos: int = Field(default=0, ge=0)
    endPos: int = Field(default=0, ge=0)
    action: Literal["INSERT", "DELETE", "REPLACE"] = "REPLACE"
    userName: str | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "UpdateDocumentRequest":
        if self.endPos < self.startPos:
            raise ValueError("endPos must not be before startPos")
        return self


def get_project_store(request: Request) -> InMemoryProjectStore:
    return request.app.state.project_store


def get_runtime(request: Request) -> OutboundRuntime:
    return request.app.state.runtime


async def _require_team_member(runtime: OutboundRuntime, team_id: str, user_id: str) -> None:
    # Membership lives in the team service; peer failures surface as 500s.
    if not await runtime.apis.teams.is_user_in_team(team_id, user_id):
        raise ForbiddenError("You are not a member of this team")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: CreateProjectRequest,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    await _require_team_member(runtime, payload.teamId, context.user_id)
    project = store.create_project(
        name=payload.name,
        team_id=payload.teamId,
        created_by=context.user_id,
        description=payload.description,
    )
    await runtime.apis.projects.invalidate_team_projects(payload.teamId)
    logger.info("project_created project_id=%s team_id=%s by=%s", project.id, payload.teamId, context.user_id)
    return success_response(project.to_dict())


@router.get("")
async def list_projects(
    team_id: str = Query(alias="teamId", min_length=1),
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    await _require_team_member(runtime, team_id, context.user_id)
    return success_response([project.to_dict() for project in store.projects_for_team(team_id)])


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    project = store.require_project(project_id)
    await _require_team_member(runtime, project.teamId, context.user_id)
    return success_response(project.to_dict())


@router.get("/{project_id}/documents")
async def list_documents(
    project_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    project = store.require_project(project_id)
    await _require_team_member(runtime, project.teamId, context.user_id)
    return success_response([document.to_dict() for document in store.documents_for(project_id)])


@router.post("/{project_id}/documents", status_code=status.HTTP_201_CREATED)
async def create_document(
    project_id: str,
    payload: CreateDocumentRequest,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    project = store.require_project(project_id)
    await _require_team_member(runtime, project.teamId, context.user_id)
    document = store.create_document(
        project_id,
        title=payload.title,
        content=payload.content,
        created_by=context.user_id,
    )
    return success_response(document.to_dict())


@router.get("/{project_id}/documents/{document_id}")
async def get_document(
    project_id: str,
    document_id: str,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    project = store.require_project(project_id)
    await _require_team_member(runtime, project.teamId, context.user_id)
    document = store.require_document(project_id, document_id)
    payload = document.to_dict()
    payload["edits"] = [edit.to_dict() for edit in store.edits(document_id, limit=RECENT_EDITS)]
    return success_response(payload)


@router.put("/{project_id}/documents/{document_id}")
async def update_document(
    project_id: str,
    document_id: str,
    payload: UpdateDocumentRequest,
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
) -> dict:
    store.require_project(project_id)
    document = store.update_document(
        store.require_document(project_id, document_id),
        user_id=context.user_id,
        user_name=payload.userName or context.name or "Unknown",
        content=payload.content,
        start_pos=payload.startPos,
        end_pos=payload.endPos,
        action=payload.action,
    )
    return success_response(document.to_dict())


@router.get("/{project_id}/documents/{document_id}/edits")
async def get_document_edits(
    project_id: str,
    document_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    context: RequestContext = Depends(get_request_context),
    store: InMemoryProjectStore = Depends(get_project_store),
    runtime: OutboundRuntime = Depends(get_runtime),
) -> dict:
    project = store.require_project(project_id)
    await _require_team_member(runtime, project.teamId, context.user_id)
    store.require_document(project_id, document_id)
    return success_response([edit.to_dict() for edit in store.edits(document_id, limit=limit)])


@internal_router.get("/by-team/{team_id}")
async def internal_projects_by_team(team_id: str, store: InMemoryProjectStore = Depends(get_project_store)) -> dict:
    return success_response([project.to_dict() for project in store.projects_for_team(team_id)])


@internal_router.get("/{project_id}")
async def internal_get_project(project_id: str, store: InMemoryProjectStore = Depends(get_project_store)) -> dict:
    return success_response(store.require_project(project_id).to_dict())
