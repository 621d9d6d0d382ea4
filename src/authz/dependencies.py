"""
FastAPI dependencies for authorization.

Usage:
    @router.get("/patients")
    async def list_patients(
        scope: QueryScopeFilter = Depends(get_query_scope),
        _: None = Depends(RequirePermission("Patients.View")),
    ):
        ...
"""

from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from database.async_engine import get_db_session
from .cache import get_permission_cache
from .check import AuthorizationCheckService, default_entity_resolvers, get_check_cache
from .context import TenantContext, get_current_context
from .evaluator import AuthorizationFacade
from .policies import get_policy_registry
from .scoping import QueryScopeFilter
from .service import PermissionService
from .store import PermissionStore


def get_tenant_context(request: Request) -> TenantContext:
    """Context placed on request.state by TenantContextMiddleware."""
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        context = get_current_context()
    return context


async def require_authenticated(
    context: TenantContext = Depends(get_tenant_context),
) -> TenantContext:
    if not context.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return context


async def get_permission_store(
    session: AsyncSession = Depends(get_db_session),
) -> PermissionStore:
    return PermissionStore(session)


async def get_permission_service(
    store: PermissionStore = Depends(get_permission_store),
) -> PermissionService:
    return PermissionService(store, get_permission_cache())


async def get_authorization_facade(
    context: TenantContext = Depends(get_tenant_context),
    service: PermissionService = Depends(get_permission_service),
) -> AuthorizationFacade:
    return AuthorizationFacade(context, service, get_policy_registry())


async def get_query_scope(
    context: TenantContext = Depends(get_tenant_context),
) -> QueryScopeFilter:
    return QueryScopeFilter(context)


async def get_check_service(
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    session: AsyncSession = Depends(get_db_session),
) -> AuthorizationCheckService:
    return AuthorizationCheckService(facade, default_entity_resolvers(session), get_check_cache())


class RequirePermission:
    """Class-based dependency for a single permission."""

    def __init__(self, permission: str):
        self.permission = permission

    async def __call__(
        self,
        context: TenantContext = Depends(require_authenticated),
        facade: AuthorizationFacade = Depends(get_authorization_facade),
    ) -> None:
        if not await facade.has(self.permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required permission: {self.permission}",
            )


def require_any_permission(permissions: Iterable[str]):
    """Require at least one permission."""
    required = sorted(set(permissions))

    async def dependency(
        context: TenantContext = Depends(require_authenticated),
        facade: AuthorizationFacade = Depends(get_authorization_facade),
    ) -> TenantContext:
        if not await facade.has_any(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of: {', '.join(required)}",
            )
        return context

    return dependency
