"""
Clinic Authorization Engine.

Access is decided in two layers:
- RBAC/PBAC: effective permissions = role grants | direct user grants
- ABAC: per-resource-type policies enforcing tenant isolation

Features:
- Cached effective-permission resolution with write-through invalidation
- Tenant-scoped list queries
- Resource-and-id checks for route guards
- Optimistic client-side reconciliation of permission toggles

Usage:
    from authz import AuthorizationFacade, RequirePermission, get_authorization_facade

    @router.get("/patients/{patient_id}")
    async def get_patient(
        patient_id: UUID,
        facade: AuthorizationFacade = Depends(get_authorization_facade),
        _: None = Depends(RequirePermission("Patients.View")),
    ):
        ...
"""

from .models import (
    Permission,
    Role,
    RolePermission,
    UserPermission,
)

from .errors import (
    ErrorCode,
    AuthorizationError,
    NotFoundError,
    InvalidArgumentError,
)

from .catalog import (
    PERMISSION_CATEGORIES,
    PermissionDefinition,
    PermissionCatalog,
    get_permission_catalog,
    SYSTEM_ROLES,
    seed_permissions,
    seed_system_roles,
)

from .store import PermissionRecord, PermissionStore
from .resolver import EffectivePermissions, EffectivePermissionResolver, merge_permissions

from .cache import (
    PermissionCache,
    TTLCache,
    get_permission_cache,
    reset_permission_cache,
)

from .service import PermissionService
from .context import TenantContext, get_current_context

from .policies import (
    ResourcePolicy,
    ResourcePolicyRegistry,
    get_policy_registry,
)

from .evaluator import AuthorizationFacade
from .scoping import QueryScopeFilter

from .check import (
    AuthorizationCheckService,
    AuthorizationResult,
    get_check_cache,
    reset_check_cache,
)

from .reconciler import (
    RolePermissionReconciler,
    UserPermissionReconciler,
)

from .dependencies import (
    get_tenant_context,
    get_authorization_facade,
    get_query_scope,
    get_check_service,
    require_authenticated,
    require_any_permission,
    RequirePermission,
)

from .middleware import TenantContextMiddleware

__all__ = [
    # Models
    "Permission",
    "Role",
    "RolePermission",
    "UserPermission",
    # Errors
    "ErrorCode",
    "AuthorizationError",
    "NotFoundError",
    "InvalidArgumentError",
    # Catalog
    "PERMISSION_CATEGORIES",
    "PermissionDefinition",
    "PermissionCatalog",
    "get_permission_catalog",
    "SYSTEM_ROLES",
    "seed_permissions",
    "seed_system_roles",
    # Resolution
    "PermissionRecord",
    "PermissionStore",
    "EffectivePermissions",
    "EffectivePermissionResolver",
    "merge_permissions",
    # Cache
    "PermissionCache",
    "TTLCache",
    "get_permission_cache",
    "reset_permission_cache",
    # Service
    "PermissionService",
    # Context
    "TenantContext",
    "get_current_context",
    # Policies
    "ResourcePolicy",
    "ResourcePolicyRegistry",
    "get_policy_registry",
    # Evaluation
    "AuthorizationFacade",
    "QueryScopeFilter",
    "AuthorizationCheckService",
    "AuthorizationResult",
    "get_check_cache",
    "reset_check_cache",
    # Client
    "RolePermissionReconciler",
    "UserPermissionReconciler",
    # Dependencies
    "get_tenant_context",
    "get_authorization_facade",
    "get_query_scope",
    "get_check_service",
    "require_authenticated",
    "require_any_permission",
    "RequirePermission",
    # Middleware
    "TenantContextMiddleware",
]
