"""
Tenant Context - per-request identity snapshot.

Built once per request from verified token claims and carried in a
context variable. Never persisted.
"""

from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import UUID
import logging

from config.settings import AuthzSettings, get_settings

logger = logging.getLogger(__name__)


def parse_uuid(value: Any) -> Optional[UUID]:
    """Parse a UUID from a claim or header value; None when absent or malformed."""
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except (ValueError, AttributeError):
        return None


@dataclass(frozen=True)
class TenantContext:
    """
    Identity of the current principal.

    Attributes:
        user_id: Principal id (None when unauthenticated)
        role_id: The principal's single role
        tenant_id: Owning clinic; None for platform staff
        is_super_admin: Exempt from tenant scoping
        role_name: Role claim as issued
    """
    user_id: Optional[UUID] = None
    role_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    is_super_admin: bool = False
    role_name: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @classmethod
    def anonymous(cls) -> "TenantContext":
        return cls()

    @classmethod
    def from_claims(
        cls,
        claims: Mapping[str, Any],
        settings: Optional[AuthzSettings] = None,
        tenant_header: Optional[str] = None,
    ) -> "TenantContext":
        """
        Build a context from decoded token claims.

        Recognised claims: sub, role_id, clinic_id, role. The tenant header is
        consulted only for super-admins whose token carries no clinic_id.
        """
        settings = settings or get_settings()

        user_id = parse_uuid(claims.get("sub"))
        role_id = parse_uuid(claims.get("role_id"))
        role_name = claims.get("role")
        is_super_admin = bool(role_name) and role_name == settings.super_admin_role

        tenant_id = parse_uuid(claims.get("clinic_id"))
        if tenant_id is None and tenant_header:
            header_tenant = parse_uuid(tenant_header)
            if is_super_admin:
                tenant_id = header_tenant
            elif header_tenant is not None:
                logger.warning(
                    f"Ignoring tenant header for non-super-admin principal {user_id}"
                )

        return cls(
            user_id=user_id,
            role_id=role_id,
            tenant_id=tenant_id,
            is_super_admin=is_super_admin,
            role_name=role_name,
        )


# =============================================================================
# REQUEST-SCOPED HOLDER
# =============================================================================

_current_context: ContextVar[TenantContext] = ContextVar(
    "authz_tenant_context", default=TenantContext()
)


def get_current_context() -> TenantContext:
    return _current_context.get()


def set_current_context(context: TenantContext) -> Token:
    return _current_context.set(context)


def reset_current_context(token: Token) -> None:
    _current_context.reset(token)
