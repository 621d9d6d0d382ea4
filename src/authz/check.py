"""
Authorization Check Service - resource-and-id oriented checks for route guards.

Answers "may the current principal perform this action on the resource with
this id" without the caller holding the entity. Every outcome is a result;
malformed input, missing entities and policy denials never raise.

Results are cached per (principal, type, id, action) for a short window.
Unlike the permission cache this one is not invalidated on grant changes;
it tolerates staleness up to its TTL.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import AuthzSettings, get_settings
from database.models import Clinic, Invoice, Patient, Payment, Subscription, User
from .cache import TTLCache
from .context import parse_uuid
from .errors import ErrorCode
from .evaluator import AuthorizationFacade
from .models import Role
from .policies import normalize_action

logger = logging.getLogger(__name__)


EntityResolver = Callable[[UUID], Awaitable[Optional[Any]]]


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of a resource check."""
    allowed: bool
    resource_type: str
    action: str
    reason: Optional[str] = None
    policy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "resource_type": self.resource_type,
            "action": self.action,
            "reason": self.reason,
            "policy": self.policy,
        }


@dataclass(frozen=True)
class CheckTarget:
    """How one resource type is checked."""
    label: str
    required_permission: str
    policy_name: str
    denial_reason: str


CHECK_TARGETS: Dict[str, CheckTarget] = {
    "user": CheckTarget("User", "Users.View", "UserPolicy", "User belongs to a different clinic"),
    "clinic": CheckTarget("Clinic", "Clinics.ViewAll", "ClinicPolicy", "Clinic is not accessible"),
    "role": CheckTarget("Role", "Roles.View", "RolePolicy", "Role is not accessible"),
    "subscription": CheckTarget(
        "Subscription", "Subscriptions.View", "SubscriptionPolicy",
        "Subscription belongs to a different clinic",
    ),
    "payment": CheckTarget(
        "Payment", "Payments.View", "PaymentPolicy", "Payment belongs to a different clinic"
    ),
    "invoice": CheckTarget(
        "Invoice", "Invoices.View", "InvoicePolicy", "Invoice belongs to a different clinic"
    ),
    "patient": CheckTarget(
        "Patient", "Patients.View", "PatientPolicy", "Patient belongs to a different clinic"
    ),
}

_ENTITY_MODELS = {
    "user": User,
    "clinic": Clinic,
    "role": Role,
    "subscription": Subscription,
    "payment": Payment,
    "invoice": Invoice,
    "patient": Patient,
}


def default_entity_resolvers(session: AsyncSession) -> Dict[str, EntityResolver]:
    """Primary-key lookups for every checkable resource type."""

    def lookup(model) -> EntityResolver:
        async def resolve(resource_id: UUID) -> Optional[Any]:
            return await session.get(model, resource_id)
        return resolve

    return {tag: lookup(model) for tag, model in _ENTITY_MODELS.items()}


def check_cache_key(principal: Optional[UUID], resource_type: str, resource_id: UUID, action: str) -> str:
    return f"auth:check:{principal or 'anonymous'}:{resource_type}:{resource_id}:{action}"


class AuthorizationCheckService:
    """Resource-and-id authorization checks with a short-lived result cache."""

    def __init__(
        self,
        facade: AuthorizationFacade,
        resolvers: Dict[str, EntityResolver],
        cache: Optional[TTLCache] = None,
    ):
        self.facade = facade
        self.resolvers = resolvers
        self.cache = cache if cache is not None else get_check_cache()

    @property
    def context(self):
        return self.facade.context

    async def check(
        self,
        resource_type: Optional[str],
        resource_id: Any,
        action: Optional[str],
    ) -> AuthorizationResult:
        resource_type = (resource_type or "").strip().lower()
        action = normalize_action(action)

        if not resource_type:
            return self._invalid(resource_type, action, "Invalid resource type")

        parsed_id = parse_uuid(resource_id)
        if parsed_id is None:
            return self._invalid(resource_type, action, "Invalid resource ID format")

        if not action:
            return self._invalid(resource_type, action, "Invalid action")

        if not self.context.is_authenticated and not self.context.is_super_admin:
            logger.warning(
                f"Authorization check without a principal. Error code: {ErrorCode.UNAUTHORIZED.value}"
            )
            return self._denied(
                resource_type, action, "Authentication required", ErrorCode.UNAUTHORIZED
            )

        key = check_cache_key(self.context.user_id, resource_type, parsed_id, action)
        try:
            cached = self.cache.get(key)
        except Exception as e:
            logger.warning(f"Authorization check cache read failed: {e}")
            cached = None
        if cached is not None:
            logger.debug(f"Cache hit for authorization check: {resource_type}:{parsed_id}:{action}")
            return cached

        logger.debug(f"Cache miss for authorization check: {resource_type}:{parsed_id}:{action}")
        result = await self._evaluate(resource_type, parsed_id, action)

        try:
            self.cache.set(key, result)
        except Exception as e:
            logger.warning(f"Authorization check cache write failed: {e}")
        return result

    async def _evaluate(self, resource_type: str, resource_id: UUID, action: str) -> AuthorizationResult:
        target = CHECK_TARGETS.get(resource_type)
        resolver = self.resolvers.get(resource_type)
        if target is None or resolver is None:
            return self._invalid(resource_type, action, f"Unknown resource type: {resource_type}")

        if not await self.facade.has(target.required_permission):
            logger.warning(
                f"{target.label} {resource_id} denied: Missing {target.required_permission} "
                f"permission. Error code: {ErrorCode.INSUFFICIENT_PERMISSIONS.value}"
            )
            return self._denied(
                resource_type, action,
                f"Missing {target.required_permission} permission",
                ErrorCode.INSUFFICIENT_PERMISSIONS,
            )

        entity = await resolver(resource_id)
        if entity is None:
            logger.warning(
                f"{target.label} {resource_id} not found. Error code: {ErrorCode.NOT_FOUND.value}"
            )
            return self._denied(
                resource_type, action, f"{target.label} not found", ErrorCode.NOT_FOUND
            )

        allowed = await self.facade.can(
            target.required_permission, action, entity, resource_type=resource_type
        )
        if not allowed:
            logger.warning(
                f"Access denied by {target.policy_name} for {resource_type} {resource_id} "
                f"action {action} requested by user {self.context.user_id}. "
                f"Error code: {ErrorCode.FORBIDDEN.value}"
            )
            return self._denied(
                resource_type, action, target.denial_reason, ErrorCode.FORBIDDEN,
                policy=target.policy_name,
            )

        logger.info(f"Authorization allowed: {target.label} {resource_id} action {action}")
        return AuthorizationResult(allowed=True, resource_type=resource_type, action=action)

    def _invalid(self, resource_type: str, action: str, reason: str) -> AuthorizationResult:
        logger.warning(f"{reason}. Error code: {ErrorCode.INVALID_ARGUMENT.value}")
        return self._denied(resource_type, action, reason, ErrorCode.INVALID_ARGUMENT)

    @staticmethod
    def _denied(
        resource_type: str,
        action: str,
        reason: str,
        code: ErrorCode,
        policy: Optional[str] = None,
    ) -> AuthorizationResult:
        return AuthorizationResult(
            allowed=False,
            resource_type=resource_type,
            action=action,
            reason=f"{reason}. Error code: {code.value}",
            policy=policy,
        )


# =============================================================================
# SINGLETON
# =============================================================================

_check_cache: Optional[TTLCache] = None


def get_check_cache(settings: Optional[AuthzSettings] = None) -> TTLCache:
    """Get singleton check-result cache."""
    global _check_cache
    if _check_cache is None:
        settings = settings or get_settings()
        _check_cache = TTLCache(
            maxsize=settings.cache_max_entries,
            ttl_seconds=settings.check_ttl_seconds,
            sliding_seconds=settings.check_sliding_seconds,
        )
    return _check_cache


def reset_check_cache() -> None:
    """Reset singleton (for testing)."""
    global _check_cache
    _check_cache = None
