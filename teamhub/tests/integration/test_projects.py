from __future__ import annotations

from httpx import ASGITransport, AsyncClient
import pytest

from teamhub.apps.projects.main import create_app as create_projects_app
from teamhub.apps.projects.store import InMemoryProjectStore
from teamhub.apps.teams.main import create_app as create_teams_app
from teamhub.apps.teams.store import InMemoryTeamStore
from teamhub.services.cache import InMemoryResponseCache
from teamhub.services.tokens import InternalPrincipal
from teamhub.tests.utils.asgi import RoutingTransport
from teamhub.tests.utils.auth import internal_headers


def _as(settings, user_id: str) -> dict[str, str]:
    return internal_headers(settings, InternalPrincipal(user_id=user_id, external_id=f"ext-{user_id}", email=f"{user_id}@example.com"))


@pytest.fixture
def parts(settings, fake_sleep):
    transport = RoutingTransport()
    team_store = InMemoryTeamStore()
    project_store = InMemoryProjectStore()
    cache = InMemoryResponseCache()
    transport.mount("teams.test", create_teams_app(settings, store=team_store))
    projects_app = create_projects_app(settings, store=project_store, cache=cache, transport=transport, sleep=fake_sleep)
    team = team_store.create_team(name="Core", owner_id="owner")
    team_store.add_member(team.id, "member")
    return projects_app, project_store, team.id, cache, transport


@pytest.mark.asyncio
async def test_team_members_create_and_read_projects(settings, parts) -> None:
    projects_app, project_store, team_id, cache, _transport = parts
    await cache.set(f"projects:team:{team_id}", {"success": True, "data": []}, 60)

    async with AsyncClient(transport=ASGITransport(app=projects_app), base_url="http://projects.test") as client:
        created = await client.post(
            "/api/projects",
            json={"name": "Launch", "teamId": team_id, "description": "Q3"},
            headers=_as(settings, "owner"),
        )
        project_id = created.json()["data"]["id"]
        fetched = await client.get(f"/api/projects/{project_id}", headers=_as(settings, "member"))
        listed = await client.get("/api/projects", params={"teamId": team_id}, headers=_as(settings, "member"))

    assert created.status_code == 201
    assert created.json()["data"]["createdBy"] == "owner"
    assert fetched.json()["data"]["name"] == "Launch"
    assert [project["id"] for project in listed.json()["data"]] == [project_id]
    assert project_store.require_project(project_id).teamId == team_id
    assert await cache.get(f"projects:team:{team_id}") is None


@pytest.mark.asyncio
async def test_outsiders_cannot_create_or_read_projects(settings, parts) -> None:
    projects_app, project_store, team_id, _cache, _transport = parts
    project = project_store.create_project(name="Launch", team_id=team_id, created_by="owner")

    async with AsyncClient(transport=ASGITransport(app=projects_app), base_url="http://projects.test") as client:
        created = await client.post(
            "/api/projects",
            json={"name": "Sneaky", "teamId": team_id},
            headers=_as(settings, "outsider"),
        )
        fetched = await client.get(f"/api/projects/{project.id}", headers=_as(settings, "outsider"))
        missing = await client.get("/api/projects/does-not-exist", headers=_as(settings, "owner"))

    assert created.status_code == 403
    assert created.json() == {"success": False, "error": "You are not a member of this team"}
    assert fetched.status_code == 403
    assert missing.status_code == 404
    assert project_store.projects_for_team(team_id) == [project]


@pytest.mark.asyncio
async def test_team_service_outage_is_a_server_error(settings, parts) -> None:
    projects_app, _project_store, team_id, _cache, transport = parts
    transport.fail("teams.test")

    async with AsyncClient(transport=ASGITransport(app=projects_app), base_url="http://projects.test") as client:
        response = await client.post(
            "/api/projects",
            json={"name": "Launch", "teamId": team_id},
            headers=_as(settings, "owner"),
        )

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_internal_project_lookups_require_the_api_key(settings, parts) -> None:
    projects_app, project_store, team_id, _cache, _transport = parts
    project = project_store.create_project(name="Launch", team_id=team_id, created_by="owner")
    key = {"x-internal-api-key": settings.internal_api_key}

    async with AsyncClient(transport=ASGITransport(app=projects_app), base_url="http://projects.test") as client:
        by_id = await client.get(f"/internal/projects/{project.id}", headers=key)
        by_team = await client.get(f"/internal/projects/by-team/{team_id}", headers=key)
        missing = await client.get("/internal/projects/does-not-exist", headers=key)
        no_key = await client.get(f"/internal/projects/{project.id}")
        wrong_key = await client.get(f"/internal/projects/{project.id}", headers={"x-internal-api-key": "nope"})

    assert by_id.json() == {"success": True, "data": project.to_dict()}
    assert [item["id"] for item in by_team.json()["data"]] == [project.id]
    assert missing.status_code == 404
    assert no_key.status_code == 401
    assert wrong_key.status_code == 403


@pytest.mark.asyncio
async def test_only_the_creator_edits_a_document(settings, parts) -> None:
    projects_app, project_store, team_id, _cache, _transport = parts
    project = project_store.create_project(name="Launch", team_id=team_id, created_by="owner")
    other = project_store.create_project(name="Other", team_id=team_id, created_by="owner")

    async with AsyncClient(transport=ASGITransport(app=projects_app), base_url="http://projects.test") as client:
        created = await client.post(
            f"/api/projects/{project.id}/documents",
            json={"title": "Plan", "content": "draft"},
            headers=_as(settings, "member"),
        )
        document_id = created.json()["data"]["id"]
        by_owner = await client.put(
            f"/api/projects/{project.id}/documents/{document_id}",
            json={"content": "hijacked", "startPos": 0, "endPos": 8},
            headers=_as(settings, "owner"),
        )
        by_creator = await client.put(
            f"/api/projects/{project.id}/documents/{document_id}",
            json={"content": "final draft", "startPos": 0, "endPos": 5, "action": "INSERT", "userName": "Mia"},
            headers=_as(settings, "member"),
        )
        fetched = await client.get(f"/api/projects/{project.id}/documents/{document_id}", headers=_as(settings, "owner"))
        elsewhere = await client.get(f"/api/projects/{other.id}/documents/{document_id}", headers=_as(settings, "owner"))
        backwards = await client.put(
            f"/api/projects/{project.id}/documents/{document_id}",
            json={"content": "x", "startPos": 3, "endPos": 1},
            headers=_as(settings, "member"),
        )

    assert created.status_code == 201
    assert by_owner.status_code == 403
    assert by_owner.json() == {"success": False, "error": "Only the document creator can edit it"}
    assert by_creator.status_code == 200
    assert by_creator.json()["data"]["content"] == "final draft"
    document = fetched.json()["data"]
    assert document["content"] == "final draft"
    assert [(edit["userId"], edit["userName"], edit["content"], edit["action"]) for edit in document["edits"]] == [
        ("member", "Mia", "final", "INSERT")
    ]
    assert elsewhere.status_code == 404
    assert backwards.status_code == 400
