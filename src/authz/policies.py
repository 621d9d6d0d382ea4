"""
Resource Policies - attribute-based checks per resource type.

Each policy answers "may this principal perform this action on this specific
instance", after the coarse permission check has already passed. Policies are
selected from the registry by resource-type tag.

Shared evaluation order:
1. Super-admin: always allowed
2. No resource (list context): allowed; listing is scoped at query time
3. Resource tenant must equal the principal's tenant
"""

from typing import Any, Dict, Iterable, Optional
from uuid import UUID
import logging

from .context import TenantContext

logger = logging.getLogger(__name__)


VIEW = "view"
LIST = "list"
CREATE = "create"
EDIT = "edit"
DELETE = "delete"
CANCEL = "cancel"


def normalize_action(action: Optional[str]) -> str:
    return (action or "").strip().lower()


# =============================================================================
# BASE POLICY
# =============================================================================

class ResourcePolicy:
    """Tenant-match policy. Subclasses add rules through check_resource."""

    resource_type: str = ""
    name: str = "ResourcePolicy"
    tenant_attribute: str = "clinic_id"

    def evaluate(
        self,
        context: TenantContext,
        action: str,
        resource: Optional[Any] = None,
    ) -> bool:
        if context.is_super_admin:
            return True
        if resource is None:
            return True
        return self.check_resource(context, normalize_action(action), resource)

    def check_resource(self, context: TenantContext, action: str, resource: Any) -> bool:
        return self.same_tenant(context, resource)

    def resource_tenant(self, resource: Any) -> Optional[UUID]:
        return getattr(resource, self.tenant_attribute, None)

    def same_tenant(self, context: TenantContext, resource: Any) -> bool:
        if context.tenant_id is None:
            return False
        return self.resource_tenant(resource) == context.tenant_id

    def __repr__(self):
        return f"<{self.name}(resource_type={self.resource_type})>"


# =============================================================================
# POLICIES
# =============================================================================

class UserPolicy(ResourcePolicy):
    """Tenant match, or the principal acting on its own account."""

    resource_type = "user"
    name = "UserPolicy"

    def check_resource(self, context: TenantContext, action: str, resource: Any) -> bool:
        if self.same_tenant(context, resource):
            return True
        return context.user_id is not None and getattr(resource, "id", None) == context.user_id


class ClinicPolicy(ResourcePolicy):
    """A clinic is its own tenant."""

    resource_type = "clinic"
    name = "ClinicPolicy"
    tenant_attribute = "id"


class RolePolicy(ResourcePolicy):
    """System roles are reserved for super-admins."""

    resource_type = "role"
    name = "RolePolicy"

    def check_resource(self, context: TenantContext, action: str, resource: Any) -> bool:
        if getattr(resource, "is_system_role", False):
            return False
        return self.same_tenant(context, resource)


class SubscriptionPolicy(ResourcePolicy):
    """Clinic owners may view, list and cancel; only super-admins alter terms."""

    resource_type = "subscription"
    name = "SubscriptionPolicy"
    owner_actions = frozenset({VIEW, LIST, CANCEL})

    def check_resource(self, context: TenantContext, action: str, resource: Any) -> bool:
        if not self.same_tenant(context, resource):
            return False
        return action in self.owner_actions


class PaymentPolicy(ResourcePolicy):
    resource_type = "payment"
    name = "PaymentPolicy"


class InvoicePolicy(ResourcePolicy):
    resource_type = "invoice"
    name = "InvoicePolicy"


class PatientPolicy(ResourcePolicy):
    resource_type = "patient"
    name = "PatientPolicy"


class BranchPolicy(ResourcePolicy):
    resource_type = "branch"
    name = "BranchPolicy"


DEFAULT_POLICIES = (
    UserPolicy(),
    ClinicPolicy(),
    RolePolicy(),
    SubscriptionPolicy(),
    PaymentPolicy(),
    InvoicePolicy(),
    PatientPolicy(),
    BranchPolicy(),
)


# =============================================================================
# REGISTRY
# =============================================================================

def resource_type_of(resource: Any) -> Optional[str]:
    """Resource-type tag declared by a model class."""
    tag = getattr(resource, "__resource_type__", None)
    return tag.lower() if isinstance(tag, str) else None


class ResourcePolicyRegistry:
    """
    Maps resource-type tags to policies.

    Read-only once the application has started. A type with no registered
    policy is allowed: the coarse permission check is the only gate for it.
    """

    def __init__(self, policies: Optional[Iterable[ResourcePolicy]] = None):
        self._policies: Dict[str, ResourcePolicy] = {}
        for policy in (DEFAULT_POLICIES if policies is None else policies):
            self.register(policy)

    def register(self, policy: ResourcePolicy, resource_type: Optional[str] = None) -> None:
        tag = (resource_type or policy.resource_type).strip().lower()
        if not tag:
            raise ValueError("Policy must declare a resource type")
        self._policies[tag] = policy

    def get(self, resource_type: Optional[str]) -> Optional[ResourcePolicy]:
        if not resource_type:
            return None
        return self._policies.get(resource_type.strip().lower())

    def is_registered(self, resource_type: str) -> bool:
        return self.get(resource_type) is not None

    def resource_types(self):
        return sorted(self._policies)

    def evaluate(
        self,
        context: TenantContext,
        action: str,
        resource: Optional[Any] = None,
        resource_type: Optional[str] = None,
    ) -> bool:
        tag = resource_type or resource_type_of(resource)
        policy = self.get(tag)
        if policy is None:
            logger.debug(f"No policy registered for resource type {tag!r}; allowing")
            return True

        allowed = policy.evaluate(context, action, resource)
        if not allowed:
            logger.warning(
                f"{policy.name} denied {normalize_action(action)!r} on {tag} "
                f"for user {context.user_id}"
            )
        return allowed


# Singleton instance
_policy_registry: Optional[ResourcePolicyRegistry] = None


def get_policy_registry() -> ResourcePolicyRegistry:
    """Get singleton policy registry."""
    global _policy_registry
    if _policy_registry is None:
        _policy_registry = ResourcePolicyRegistry()
    return _policy_registry


def reset_policy_registry() -> None:
    """Reset singleton (for testing)."""
    global _policy_registry
    _policy_registry = None
