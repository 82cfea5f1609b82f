from __future__ import annotations

from typing import Any

from teamhub.services.service_client import ServiceClient, ServiceClients


def _unwrap(payload: Any) -> Any:
    # Downstream services answer {"success": true, "data": ...}.
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class _InternalAPI:
    # Calls to /internal routes authenticate with the shared API key only.

    def __init__(self, client: ServiceClient, *, internal_api_key: str) -> None:
        self._client = client
        self._headers = {"x-internal-api-key": internal_api_key}

    async def _get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cache_key: str | None = None,
        cache_ttl_s: int = 60,
    ) -> Any:
        payload = await self._client.request_json(
            "GET",
            path,
            params=params,
            headers=self._headers,
            cache_key=cache_key,
            cache_ttl_s=cache_ttl_s,
        )
        return _unwrap(payload)

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        payload = await self._client.request_json("POST", path, json=body, headers=self._headers)
        return _unwrap(payload)


class UserServiceAPI(_InternalAPI):
    async def get_user(self, user_id: str) -> dict[str, Any]:
        return await self._get(f"/internal/users/{user_id}", cache_key=f"user:{user_id}", cache_ttl_s=300)

    async def get_user_by_external_id(self, external_id: str) -> dict[str, Any]:
        return await self._get(
            f"/internal/users/by-external-id/{external_id}",
            cache_key=f"user:external:{external_id}",
            cache_ttl_s=300,
        )

    async def get_users(self, user_ids: list[str]) -> list[dict[str, Any]]:
        # Batch lookups are POSTs and therefore never served from the cache.
        return await self._post("/internal/users/batch", {"userIds": list(user_ids)})

    async def invalidate_user(self, user_id: str, external_id: str | None = None) -> None:
        await self._client.cache.delete(f"user:{user_id}")
        if external_id:
            await self._client.cache.delete(f"user:external:{external_id}")


class TeamServiceAPI(_InternalAPI):
    async def get_team(self, team_id: str) -> dict[str, Any]:
        return await self._get(f"/internal/teams/{team_id}", cache_key=f"team:{team_id}", cache_ttl_s=120)

    async def get_team_members(self, team_id: str) -> list[dict[str, Any]]:
        return await self._get(
            f"/internal/teams/{team_id}/members",
            cache_key=f"team:{team_id}:members",
            cache_ttl_s=60,
        )

    async def is_user_in_team(self, team_id: str, user_id: str) -> bool:
        payload = await self._get(
            f"/internal/teams/{team_id}/check-member/{user_id}",
            cache_key=f"team:{team_id}:member:{user_id}",
            cache_ttl_s=120,
        )
        if isinstance(payload, dict):
            return bool(payload.get("isMember"))
        return bool(payload)

    async def invalidate_membership(self, team_id: str) -> None:
        await self._client.cache.delete(f"team:{team_id}:members")
        await self._client.cache.delete_pattern(f"team:{team_id}:member:*")


class ProjectServiceAPI(_InternalAPI):
    async def get_project(self, project_id: str) -> dict[str, Any]:
        return await self._get(
            f"/internal/projects/{project_id}",
            cache_key=f"project:{project_id}",
            cache_ttl_s=120,
        )

    async def get_projects_by_team(self, team_id: str) -> list[dict[str, Any]]:
        return await self._get(
            f"/internal/projects/by-team/{team_id}",
            cache_key=f"projects:team:{team_id}",
            cache_ttl_s=60,
        )

    async def invalidate_team_projects(self, team_id: str) -> None:
        await self._client.cache.delete(f"projects:team:{team_id}")


class NotificationServiceAPI(_InternalAPI):
    async def create_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
    ) -> dict[str, Any]:
        result = await self._post(
            "/internal/notifications",
            {"userId": user_id, "type": type, "title": title, "message": message},
        )
        await self._client.cache.delete_pattern(f"notifications:user:{user_id}:*")
        return result

    async def get_user_notifications(self, user_id: str, *, unread_only: bool = False) -> list[dict[str, Any]]:
        return await self._get(
            f"/internal/notifications/user/{user_id}",
            params={"unread": "true"} if unread_only else None,
            cache_key=f"notifications:user:{user_id}:{'unread' if unread_only else 'all'}",
            cache_ttl_s=30,
        )


class ServiceAPIs:
    # Typed facades over the shared service clients.

    def __init__(self, clients: ServiceClients, *, internal_api_key: str) -> None:
        self.users = UserServiceAPI(clients.get("users"), internal_api_key=internal_api_key)
        self.teams = TeamServiceAPI(clients.get("teams"), internal_api_key=internal_api_key)
        self.projects = ProjectServiceAPI(clients.get("projects"), internal_api_key=internal_api_key)
        self.notifications = NotificationServiceAPI(
            clients.get("notifications"),
            internal_api_key=internal_api_key,
        )
