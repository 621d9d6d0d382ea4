"""
Permissions API client.

Thin async wrapper over the permission routes, used by the optimistic
reconcilers. Non-2xx responses raise httpx.HTTPStatusError.
"""

from typing import Any, Dict, List
from uuid import UUID
import logging

import httpx

from .store import PermissionRecord

logger = logging.getLogger(__name__)


def _records(payload: List[Dict[str, Any]]) -> List[PermissionRecord]:
    return [
        PermissionRecord(
            id=UUID(str(item["id"])),
            name=item["name"],
            category=item["category"],
            description=item.get("description"),
        )
        for item in payload
    ]


class PermissionsApiClient:
    """
    Client for the /permissions routes.

    Usage:
        async with httpx.AsyncClient(base_url=url, headers=auth) as http:
            api = PermissionsApiClient(http)
            effective = await api.get_user_effective(user_id)
    """

    def __init__(self, http: httpx.AsyncClient, prefix: str = "/permissions"):
        self.http = http
        self.prefix = prefix.rstrip("/")

    async def _request(self, method: str, path: str) -> Any:
        response = await self.http.request(method, f"{self.prefix}{path}")
        if response.is_error:
            logger.warning(f"{method} {self.prefix}{path} failed with {response.status_code}")
        response.raise_for_status()
        return response.json() if response.content else None

    async def list_permissions(self) -> List[PermissionRecord]:
        return _records(await self._request("GET", ""))

    async def get_role_permissions(self, role_id: UUID) -> List[PermissionRecord]:
        return _records(await self._request("GET", f"/roles/{role_id}"))

    async def get_user_permissions(self, user_id: UUID) -> List[PermissionRecord]:
        """Direct user grants only."""
        return _records(await self._request("GET", f"/users/{user_id}"))

    async def get_user_effective(self, user_id: UUID) -> List[PermissionRecord]:
        payload = await self._request("GET", f"/users/{user_id}/effective")
        return _records(payload["permissions"])

    async def assign_to_role(self, role_id: UUID, permission_id: UUID) -> bool:
        payload = await self._request("POST", f"/roles/{role_id}/{permission_id}")
        return bool(payload["changed"])

    async def remove_from_role(self, role_id: UUID, permission_id: UUID) -> bool:
        payload = await self._request("DELETE", f"/roles/{role_id}/{permission_id}")
        return bool(payload["changed"])

    async def assign_to_user(self, user_id: UUID, permission_id: UUID) -> bool:
        payload = await self._request("POST", f"/users/{user_id}/{permission_id}")
        return bool(payload["changed"])

    async def remove_from_user(self, user_id: UUID, permission_id: UUID) -> bool:
        payload = await self._request("DELETE", f"/users/{user_id}/{permission_id}")
        return bool(payload["changed"])

    async def reset_user_permissions(self, user_id: UUID) -> int:
        payload = await self._request("DELETE", f"/users/{user_id}")
        return int(payload["removed"])
