"""
Permission Service - cached resolution and write-through grant mutations.

Reads go cache first and fall back to the store. Every mutation evicts the
affected cache keys before it returns, so the caller's next read never sees
the pre-mutation set. A failing cache is logged and bypassed; it never causes
a denial.
"""

from typing import Any, Callable, Optional, Tuple
from uuid import UUID
import logging

from .cache import PermissionCache, get_permission_cache
from .resolver import EffectivePermissionResolver, EffectivePermissions
from .store import PermissionRecord, PermissionStore

logger = logging.getLogger(__name__)


class PermissionService:
    """
    Cached permission service.

    Cache misses recompute through an EffectivePermissionResolver whose
    grant loaders are this service's cached role and user reads.

    Usage:
        service = PermissionService(PermissionStore(session), get_permission_cache())
        effective = await service.get_effective_permissions(user_id, role_id)
        if effective.has("Patients.View"):
            ...
    """

    def __init__(self, store: PermissionStore, cache: Optional[PermissionCache] = None):
        self.store = store
        self.cache = cache or get_permission_cache()
        self.resolver = EffectivePermissionResolver(
            store,
            role_grants=self.get_role_permissions,
            user_grants=self.get_user_permissions,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_effective_permissions(
        self,
        user_id: UUID,
        role_id: UUID,
    ) -> EffectivePermissions:
        """
        Effective permission set for a user holding a role.

        Raises:
            NotFoundError: The role does not exist.
        """
        cached = self._cache_read(self.cache.get_effective, user_id, role_id)
        if cached is not None:
            return cached

        generation = self._generation(user_id=user_id, role_id=role_id)
        effective = await self.resolver.get_effective(user_id, role_id)
        if generation is not None:
            self._cache_write(self.cache.set_effective, user_id, role_id, effective, generation)
        return effective

    async def user_has_permission(
        self,
        user_id: UUID,
        role_id: UUID,
        permission_name: Optional[str],
    ) -> bool:
        if not permission_name or not permission_name.strip():
            return False
        effective = await self.get_effective_permissions(user_id, role_id)
        return effective.has(permission_name)

    async def get_role_permissions(self, role_id: UUID) -> Tuple[PermissionRecord, ...]:
        """Permissions granted to a role. Raises NotFoundError for an unknown role."""
        cached = self._cache_read(self.cache.get_role, role_id)
        if cached is not None:
            return cached

        generation = self._generation(role_id=role_id)
        permissions = tuple(await self.resolver.load_role_permissions(role_id))
        if generation is not None:
            self._cache_write(self.cache.set_role, role_id, permissions, generation)
        return permissions

    async def get_user_permissions(self, user_id: UUID) -> Tuple[PermissionRecord, ...]:
        """Direct user grants only, without the role's."""
        cached = self._cache_read(self.cache.get_user, user_id)
        if cached is not None:
            return cached

        generation = self._generation(user_id=user_id)
        permissions = tuple(await self.store.get_user_permissions(user_id))
        if generation is not None:
            self._cache_write(self.cache.set_user, user_id, permissions, generation)
        return permissions

    def get_version(self, user_id: UUID, role_id: UUID) -> int:
        """Version stamp of the user's effective set; 0 when never computed."""
        try:
            return self.cache.get_version(user_id, role_id)
        except Exception as e:
            logger.warning(f"Permission cache version read failed: {e}")
            return 0

    # -------------------------------------------------------------------------
    # Mutations (write-through)
    # -------------------------------------------------------------------------

    async def assign_to_role(self, role_id: UUID, permission_id: UUID) -> bool:
        changed = await self.store.assign_to_role(role_id, permission_id)
        self.cache.invalidate_role(role_id)
        logger.info(f"Assigned permission {permission_id} to role {role_id} (changed={changed})")
        return changed

    async def remove_from_role(self, role_id: UUID, permission_id: UUID) -> bool:
        changed = await self.store.remove_from_role(role_id, permission_id)
        self.cache.invalidate_role(role_id)
        logger.info(f"Removed permission {permission_id} from role {role_id} (changed={changed})")
        return changed

    async def assign_to_user(self, user_id: UUID, permission_id: UUID) -> bool:
        changed = await self.store.assign_to_user(user_id, permission_id)
        self.cache.invalidate_user(user_id)
        logger.info(f"Assigned permission {permission_id} to user {user_id} (changed={changed})")
        return changed

    async def remove_from_user(self, user_id: UUID, permission_id: UUID) -> bool:
        changed = await self.store.remove_from_user(user_id, permission_id)
        self.cache.invalidate_user(user_id)
        logger.info(f"Removed permission {permission_id} from user {user_id} (changed={changed})")
        return changed

    async def reset_user_permissions(self, user_id: UUID) -> int:
        """Drop every direct grant so the user is back to role defaults."""
        removed = await self.store.reset_user_permissions(user_id)
        self.cache.invalidate_user(user_id)
        logger.info(f"Reset user {user_id} to role defaults ({removed} grants removed)")
        return removed

    # -------------------------------------------------------------------------
    # Cache access
    # -------------------------------------------------------------------------

    def _cache_read(self, getter: Callable[..., Any], *key: Any) -> Optional[Any]:
        try:
            return getter(*key)
        except Exception as e:
            logger.warning(f"Permission cache read failed, recomputing: {e}")
            return None

    def _cache_write(self, setter: Callable[..., Any], *args: Any) -> None:
        try:
            setter(*args)
        except Exception as e:
            logger.warning(f"Permission cache write failed: {e}")

    def _generation(self, user_id: Optional[UUID] = None, role_id: Optional[UUID] = None) -> Optional[int]:
        # None means the result must not be cached
        try:
            return self.cache.generation(user_id=user_id, role_id=role_id)
        except Exception as e:
            logger.warning(f"Permission cache generation read failed: {e}")
            return None
