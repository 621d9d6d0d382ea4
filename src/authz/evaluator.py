"""
Authorization Facade - the single entry point for permission checks.

has(permission): role/user permission check for the current principal.
can(permission, action, resource): has() first, then the resource policy.
"""

from typing import Any, Iterable, Optional
import logging

from .context import TenantContext
from .errors import ErrorCode, NotFoundError
from .policies import ResourcePolicyRegistry, get_policy_registry
from .service import PermissionService

logger = logging.getLogger(__name__)


class AuthorizationFacade:
    """
    Permission evaluator bound to one principal.

    Usage:
        facade = AuthorizationFacade(context, permission_service)
        if await facade.can("Patients.Edit", "edit", patient):
            ...
    """

    def __init__(
        self,
        context: TenantContext,
        permission_service: PermissionService,
        policies: Optional[ResourcePolicyRegistry] = None,
    ):
        self.context = context
        self.permission_service = permission_service
        self.policies = policies or get_policy_registry()

    async def has(self, permission: Optional[str]) -> bool:
        """Check a permission by name. Never raises for a denial."""
        if self.context.is_super_admin:
            return True

        if not permission or not permission.strip():
            logger.warning("Permission check requested with an empty permission name")
            return False

        if not self.context.is_authenticated:
            logger.warning(f"[{ErrorCode.UNAUTHORIZED.value}] {permission} checked without a principal")
            return False

        if self.context.role_id is None:
            logger.warning(
                f"[{ErrorCode.FORBIDDEN.value}] User {self.context.user_id} has no role; "
                f"denying {permission}"
            )
            return False

        try:
            allowed = await self.permission_service.user_has_permission(
                self.context.user_id, self.context.role_id, permission
            )
        except NotFoundError as e:
            logger.warning(f"[{e.code.value}] {e.message}; denying {permission}")
            return False

        if not allowed:
            logger.debug(
                f"[{ErrorCode.INSUFFICIENT_PERMISSIONS.value}] User {self.context.user_id} "
                f"lacks {permission}"
            )
        return allowed

    async def has_any(self, permissions: Iterable[str]) -> bool:
        for permission in permissions:
            if await self.has(permission):
                return True
        return False

    async def has_all(self, permissions: Iterable[str]) -> bool:
        permissions = list(permissions)
        if not permissions:
            return False
        for permission in permissions:
            if not await self.has(permission):
                return False
        return True

    async def can(
        self,
        permission: Optional[str],
        action: str,
        resource: Optional[Any] = None,
        resource_type: Optional[str] = None,
    ) -> bool:
        """
        Check a permission and then the resource policy for a specific instance.

        The policy is chosen by resource_type, or by the resource's
        __resource_type__ tag when no type is given.
        """
        if not await self.has(permission):
            return False

        if self.context.is_super_admin:
            return True

        return self.policies.evaluate(self.context, action, resource, resource_type)
