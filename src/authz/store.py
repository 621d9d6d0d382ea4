"""
Permission Store - async persistence primitives for grants.

Exposes read and write primitives only; no caching and no authorization.
Mutations commit before returning so that callers can invalidate caches
against durable state.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User
from .errors import ErrorCode, NotFoundError
from .models import Permission, Role, RolePermission, UserPermission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionRecord:
    """Detached snapshot of a permission row."""
    id: UUID
    name: str
    category: str
    description: Optional[str] = None

    @classmethod
    def from_model(cls, permission: Permission) -> "PermissionRecord":
        return cls(
            id=permission.id,
            name=permission.name,
            category=permission.category,
            description=permission.description,
        )


class PermissionStore:
    """SQLAlchemy-backed storage for permissions, role grants and user grants."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_role(self, role_id: UUID) -> Optional[Role]:
        return await self.session.get(Role, role_id)

    async def get_permission(self, permission_id: UUID) -> Optional[Permission]:
        return await self.session.get(Permission, permission_id)

    async def get_permission_by_name(self, name: str) -> Optional[Permission]:
        stmt = select(Permission).where(Permission.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_permissions(self) -> List[PermissionRecord]:
        stmt = select(Permission).order_by(Permission.category, Permission.name)
        result = await self.session.execute(stmt)
        return [PermissionRecord.from_model(p) for p in result.scalars().all()]

    async def get_role_permissions(self, role_id: UUID) -> List[PermissionRecord]:
        """Permissions granted to a role."""
        stmt = (
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.name)
        )
        result = await self.session.execute(stmt)
        return [PermissionRecord.from_model(p) for p in result.scalars().all()]

    async def get_user_permissions(self, user_id: UUID) -> List[PermissionRecord]:
        """Permissions granted directly to a user, excluding the role."""
        stmt = (
            select(Permission)
            .join(UserPermission, UserPermission.permission_id == Permission.id)
            .where(UserPermission.user_id == user_id)
            .order_by(Permission.name)
        )
        result = await self.session.execute(stmt)
        return [PermissionRecord.from_model(p) for p in result.scalars().all()]

    async def get_user_role(self, user_id: UUID) -> Optional[Tuple[Optional[UUID], Optional[UUID]]]:
        """Return (role_id, clinic_id) for a user, or None when the user is unknown."""
        stmt = select(User.role_id, User.clinic_id).where(User.id == user_id)
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return row.role_id, row.clinic_id

    async def get_user_ids_by_role(self, role_id: UUID) -> List[UUID]:
        stmt = select(User.id).where(User.role_id == role_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def assign_to_role(self, role_id: UUID, permission_id: UUID) -> bool:
        """Grant a permission to a role. Returns False when already granted."""
        await self._require_role(role_id)
        await self._require_permission(permission_id)

        if await self.session.get(RolePermission, (role_id, permission_id)) is not None:
            return False

        self.session.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await self.session.commit()
        return True

    async def remove_from_role(self, role_id: UUID, permission_id: UUID) -> bool:
        """Withdraw a permission from a role. Returns False when it was not granted."""
        await self._require_role(role_id)
        await self._require_permission(permission_id)

        result = await self.session.execute(
            delete(RolePermission).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
        )
        await self.session.commit()
        return result.rowcount > 0

    async def assign_to_user(self, user_id: UUID, permission_id: UUID) -> bool:
        """Grant a permission directly to a user. Returns False when already granted."""
        await self._require_user(user_id)
        await self._require_permission(permission_id)

        if await self.session.get(UserPermission, (user_id, permission_id)) is not None:
            return False

        self.session.add(UserPermission(user_id=user_id, permission_id=permission_id))
        await self.session.commit()
        return True

    async def remove_from_user(self, user_id: UUID, permission_id: UUID) -> bool:
        """Withdraw a direct user grant. Returns False when it was not granted."""
        await self._require_user(user_id)
        await self._require_permission(permission_id)

        result = await self.session.execute(
            delete(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == permission_id,
            )
        )
        await self.session.commit()
        return result.rowcount > 0

    async def reset_user_permissions(self, user_id: UUID) -> int:
        """Remove every direct grant of a user. Returns the number removed."""
        await self._require_user(user_id)

        result = await self.session.execute(
            delete(UserPermission).where(UserPermission.user_id == user_id)
        )
        await self.session.commit()
        return result.rowcount or 0

    # -------------------------------------------------------------------------
    # Existence checks
    # -------------------------------------------------------------------------

    async def _require_role(self, role_id: UUID) -> Role:
        role = await self.get_role(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found", ErrorCode.ROLE_NOT_FOUND)
        return role

    async def _require_permission(self, permission_id: UUID) -> Permission:
        permission = await self.get_permission(permission_id)
        if permission is None:
            raise NotFoundError(
                f"Permission {permission_id} not found", ErrorCode.PERMISSION_NOT_FOUND
            )
        return permission

    async def _require_user(self, user_id: UUID) -> None:
        exists = (await self.session.execute(
            select(User.id).where(User.id == user_id)
        )).scalar_one_or_none()
        if exists is None:
            raise NotFoundError(f"User {user_id} not found", ErrorCode.USER_NOT_FOUND)
