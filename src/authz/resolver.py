"""
Effective permission resolution.

Effective(user) = RoleGrants(role(user)) | UserGrants(user), deduplicated by
permission id. Name membership checks ignore case. Resolution itself never
caches; the permission service hands it cached loaders.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from .errors import ErrorCode, NotFoundError
from .store import PermissionRecord, PermissionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectivePermissions:
    """Immutable snapshot of a user's effective permission set."""
    user_id: UUID
    role_id: UUID
    permissions: Tuple[PermissionRecord, ...]
    role_permission_ids: FrozenSet[UUID] = frozenset()
    user_permission_ids: FrozenSet[UUID] = frozenset()
    _names: FrozenSet[str] = field(default=frozenset(), repr=False, compare=False)

    @property
    def ids(self) -> FrozenSet[UUID]:
        return frozenset(p.id for p in self.permissions)

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.permissions]

    def has(self, permission_name: str) -> bool:
        """Case-insensitive membership check by name."""
        if not permission_name:
            return False
        return permission_name.strip().lower() in self._names

    def is_inherited(self, permission_id: UUID) -> bool:
        """True when the permission comes from the role and not from a user grant."""
        return permission_id in self.role_permission_ids and permission_id not in self.user_permission_ids

    def __len__(self) -> int:
        return len(self.permissions)

    def __iter__(self):
        return iter(self.permissions)


def merge_permissions(
    user_id: UUID,
    role_id: UUID,
    role_permissions: Iterable[PermissionRecord],
    user_permissions: Iterable[PermissionRecord],
) -> EffectivePermissions:
    """Union role and user grants by permission id, role grants first."""
    role_permissions = list(role_permissions)
    user_permissions = list(user_permissions)

    merged: Dict[UUID, PermissionRecord] = {}
    for permission in role_permissions + user_permissions:
        merged.setdefault(permission.id, permission)

    return EffectivePermissions(
        user_id=user_id,
        role_id=role_id,
        permissions=tuple(merged.values()),
        role_permission_ids=frozenset(p.id for p in role_permissions),
        user_permission_ids=frozenset(p.id for p in user_permissions),
        _names=frozenset(p.name.lower() for p in merged.values()),
    )


GrantLoader = Callable[[UUID], Awaitable[Sequence[PermissionRecord]]]


class EffectivePermissionResolver:
    """
    Computes the permission set a principal actually has.

    Role and user grants come from the store by default. A caching layer
    injects its own loaders so that a recompute reuses cached raw sets.
    """

    def __init__(
        self,
        store: PermissionStore,
        role_grants: Optional[GrantLoader] = None,
        user_grants: Optional[GrantLoader] = None,
    ):
        self.store = store
        self._role_grants = role_grants or self.load_role_permissions
        self._user_grants = user_grants or store.get_user_permissions

    async def load_role_permissions(self, role_id: UUID) -> List[PermissionRecord]:
        """Role grants straight from the store. An unknown role raises NotFoundError."""
        role = await self.store.get_role(role_id)
        if role is None:
            logger.warning(f"Cannot resolve permissions: role {role_id} not found")
            raise NotFoundError(f"Role {role_id} not found", ErrorCode.ROLE_NOT_FOUND)
        return await self.store.get_role_permissions(role_id)

    async def get_effective(self, user_id: UUID, role_id: UUID) -> EffectivePermissions:
        """
        Resolve effective permissions for a user holding a role.

        Raises:
            NotFoundError: The role does not exist. An unknown role never
                resolves to an empty set.
        """
        role_permissions = await self._role_grants(role_id)
        user_permissions = await self._user_grants(user_id)

        effective = merge_permissions(user_id, role_id, role_permissions, user_permissions)
        logger.debug(
            f"Resolved {len(effective)} permissions for user {user_id} "
            f"({len(role_permissions)} from role, {len(user_permissions)} direct)"
        )
        return effective

    async def has_permission(
        self,
        user_id: UUID,
        role_id: UUID,
        permission_name: Optional[str],
    ) -> bool:
        if not permission_name:
            return False
        effective = await self.get_effective(user_id, role_id)
        return effective.has(permission_name)
