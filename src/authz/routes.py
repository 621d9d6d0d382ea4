"""
Authorization API Routes - checks and permission administration.

Endpoints:
- POST /authorization/check - Resource-and-id authorization check
- GET /permissions - Permission catalog
- GET /permissions/me - Caller's effective permissions and version
- GET /permissions/roles/{role_id} - Role grants
- POST/DELETE /permissions/roles/{role_id}/{permission_id} - Role grant mutation
- GET /permissions/users/{user_id} - Direct user grants
- GET /permissions/users/{user_id}/effective - Effective user permissions
- POST/DELETE /permissions/users/{user_id}/{permission_id} - User grant mutation
- DELETE /permissions/users/{user_id} - Reset user to role defaults
- GET /roles, GET /users - Tenant-scoped listings
"""

from typing import List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.async_engine import get_db_session
from database.models import User
from .check import AuthorizationCheckService
from .context import TenantContext
from .dependencies import (
    RequirePermission,
    get_authorization_facade,
    get_check_service,
    get_permission_service,
    get_query_scope,
    require_authenticated,
)
from .evaluator import AuthorizationFacade
from .models import Role
from .policies import EDIT, VIEW
from .scoping import QueryScopeFilter
from .service import PermissionService
from .store import PermissionRecord

logger = logging.getLogger(__name__)

check_router = APIRouter(prefix="/authorization", tags=["Authorization"])
router = APIRouter(prefix="/permissions", tags=["Permissions"])
listing_router = APIRouter(tags=["Listings"])


# =============================================================================
# SCHEMAS
# =============================================================================

class PermissionResponse(BaseModel):
    id: str
    name: str
    category: str
    description: Optional[str] = None


class EffectivePermissionsResponse(BaseModel):
    user_id: str
    role_id: Optional[str]
    permissions: List[PermissionResponse]
    version: int


class MutationResponse(BaseModel):
    changed: bool


class ResetResponse(BaseModel):
    removed: int


class CheckRequest(BaseModel):
    """Authorization check request. Malformed values yield a denied result."""
    resource_type: str = ""
    resource_id: str = ""
    action: str = ""


class CheckResponse(BaseModel):
    allowed: bool
    resource_type: str
    action: str
    reason: Optional[str] = None
    policy: Optional[str] = None


class RoleSummary(BaseModel):
    id: str
    name: str
    clinic_id: Optional[str]
    is_system_role: bool
    is_template: bool


class UserSummary(BaseModel):
    id: str
    email: str
    clinic_id: Optional[str]
    role_id: Optional[str]


def _permission_response(permission: PermissionRecord) -> PermissionResponse:
    return PermissionResponse(
        id=str(permission.id),
        name=permission.name,
        category=permission.category,
        description=permission.description,
    )


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


# =============================================================================
# TARGET LOOKUPS
# =============================================================================

async def _authorize_role(
    role_id: UUID,
    permission: str,
    action: str,
    facade: AuthorizationFacade,
    service: PermissionService,
) -> Role:
    role = await service.store.get_role(role_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    if not await facade.can(permission, action, role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Role is not accessible")
    return role


async def _authorize_user(
    user_id: UUID,
    permission: str,
    action: str,
    facade: AuthorizationFacade,
    session: AsyncSession,
) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not await facade.can(permission, action, user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User belongs to a different clinic",
        )
    return user


async def _effective_response(
    user_id: UUID,
    role_id: Optional[UUID],
    service: PermissionService,
) -> EffectivePermissionsResponse:
    if role_id is None:
        permissions = await service.get_user_permissions(user_id)
        version = 0
    else:
        effective = await service.get_effective_permissions(user_id, role_id)
        permissions = effective.permissions
        version = service.get_version(user_id, role_id)

    return EffectivePermissionsResponse(
        user_id=str(user_id),
        role_id=_str(role_id),
        permissions=[_permission_response(p) for p in permissions],
        version=version,
    )


# =============================================================================
# AUTHORIZATION CHECK
# =============================================================================

@check_router.post("/check", response_model=CheckResponse)
async def check_authorization(
    request: CheckRequest,
    checker: AuthorizationCheckService = Depends(get_check_service),
):
    """
    Check whether the caller may act on a specific resource.

    Always answers 200; a denial is reported in the body with a reason.
    """
    result = await checker.check(request.resource_type, request.resource_id, request.action)
    return CheckResponse(**result.to_dict())


# =============================================================================
# PERMISSION ENDPOINTS
# =============================================================================

@router.get(
    "",
    response_model=List[PermissionResponse],
    dependencies=[Depends(RequirePermission("AppPermissions.View"))],
)
async def list_permissions(service: PermissionService = Depends(get_permission_service)):
    return [_permission_response(p) for p in await service.store.list_permissions()]


@router.get(
    "/me",
    response_model=EffectivePermissionsResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.ViewOwn"))],
)
async def my_permissions(
    context: TenantContext = Depends(require_authenticated),
    service: PermissionService = Depends(get_permission_service),
):
    return await _effective_response(context.user_id, context.role_id, service)


@router.get(
    "/roles/{role_id}",
    response_model=List[PermissionResponse],
    dependencies=[Depends(RequirePermission("AppPermissions.View"))],
)
async def get_role_permissions(
    role_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
):
    await _authorize_role(role_id, "AppPermissions.View", VIEW, facade, service)
    return [_permission_response(p) for p in await service.get_role_permissions(role_id)]


@router.post(
    "/roles/{role_id}/{permission_id}",
    response_model=MutationResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.Assign"))],
)
async def assign_to_role(
    role_id: UUID,
    permission_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
):
    await _authorize_role(role_id, "AppPermissions.Assign", EDIT, facade, service)
    return MutationResponse(changed=await service.assign_to_role(role_id, permission_id))


@router.delete(
    "/roles/{role_id}/{permission_id}",
    response_model=MutationResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.Revoke"))],
)
async def remove_from_role(
    role_id: UUID,
    permission_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
):
    await _authorize_role(role_id, "AppPermissions.Revoke", EDIT, facade, service)
    return MutationResponse(changed=await service.remove_from_role(role_id, permission_id))


@router.get(
    "/users/{user_id}",
    response_model=List[PermissionResponse],
    dependencies=[Depends(RequirePermission("AppPermissions.ViewUserPermissions"))],
)
async def get_user_permissions(
    user_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
    session: AsyncSession = Depends(get_db_session),
):
    await _authorize_user(user_id, "AppPermissions.ViewUserPermissions", VIEW, facade, session)
    return [_permission_response(p) for p in await service.get_user_permissions(user_id)]


@router.get(
    "/users/{user_id}/effective",
    response_model=EffectivePermissionsResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.ViewUserPermissions"))],
)
async def get_user_effective_permissions(
    user_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
    session: AsyncSession = Depends(get_db_session),
):
    user = await _authorize_user(
        user_id, "AppPermissions.ViewUserPermissions", VIEW, facade, session
    )
    return await _effective_response(user.id, user.role_id, service)


@router.post(
    "/users/{user_id}/{permission_id}",
    response_model=MutationResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.Assign"))],
)
async def assign_to_user(
    user_id: UUID,
    permission_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
    session: AsyncSession = Depends(get_db_session),
):
    await _authorize_user(user_id, "AppPermissions.Assign", EDIT, facade, session)
    return MutationResponse(changed=await service.assign_to_user(user_id, permission_id))


@router.delete(
    "/users/{user_id}/{permission_id}",
    response_model=MutationResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.Revoke"))],
)
async def remove_from_user(
    user_id: UUID,
    permission_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
    session: AsyncSession = Depends(get_db_session),
):
    await _authorize_user(user_id, "AppPermissions.Revoke", EDIT, facade, session)
    return MutationResponse(changed=await service.remove_from_user(user_id, permission_id))


@router.delete(
    "/users/{user_id}",
    response_model=ResetResponse,
    dependencies=[Depends(RequirePermission("AppPermissions.Revoke"))],
)
async def reset_user_permissions(
    user_id: UUID,
    facade: AuthorizationFacade = Depends(get_authorization_facade),
    service: PermissionService = Depends(get_permission_service),
    session: AsyncSession = Depends(get_db_session),
):
    """Reset a user to role defaults by removing every direct grant."""
    await _authorize_user(user_id, "AppPermissions.Revoke", EDIT, facade, session)
    return ResetResponse(removed=await service.reset_user_permissions(user_id))


# =============================================================================
# SCOPED LISTINGS
# =============================================================================

@listing_router.get(
    "/roles",
    response_model=List[RoleSummary],
    dependencies=[Depends(RequirePermission("Roles.View"))],
)
async def list_roles(
    scope: QueryScopeFilter = Depends(get_query_scope),
    session: AsyncSession = Depends(get_db_session),
):
    query = scope.filter_roles(select(Role).order_by(Role.name))
    roles = (await session.execute(query)).scalars().all()
    return [
        RoleSummary(
            id=str(r.id),
            name=r.name,
            clinic_id=_str(r.clinic_id),
            is_system_role=r.is_system_role,
            is_template=r.is_template,
        )
        for r in roles
    ]


@listing_router.get(
    "/users",
    response_model=List[UserSummary],
    dependencies=[Depends(RequirePermission("Users.View"))],
)
async def list_users(
    scope: QueryScopeFilter = Depends(get_query_scope),
    session: AsyncSession = Depends(get_db_session),
):
    query = scope.filter_users(select(User).order_by(User.email))
    users = (await session.execute(query)).scalars().all()
    return [
        UserSummary(
            id=str(u.id),
            email=u.email,
            clinic_id=_str(u.clinic_id),
            role_id=_str(u.role_id),
        )
        for u in users
    ]
