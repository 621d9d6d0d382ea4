"""
Query Scope Filter - tenant predicates for list queries.

Scoping is composed into the SELECT before it runs; rows are never loaded and
post-filtered. A principal without a tenant gets a query that matches nothing.
"""

from typing import Callable, Dict
import logging

from sqlalchemy import Select, false

from database.models import Branch, Clinic, Invoice, Patient, Payment, Subscription, User
from .context import TenantContext
from .models import Role

logger = logging.getLogger(__name__)


# Tenant column per resource type
TENANT_COLUMNS: Dict[str, Callable[[], object]] = {
    "user": lambda: User.clinic_id,
    "role": lambda: Role.clinic_id,
    "clinic": lambda: Clinic.id,
    "subscription": lambda: Subscription.clinic_id,
    "invoice": lambda: Invoice.clinic_id,
    "payment": lambda: Payment.clinic_id,
    "patient": lambda: Patient.clinic_id,
    "branch": lambda: Branch.clinic_id,
}


class QueryScopeFilter:
    """Applies the current principal's tenant boundary to list queries."""

    def __init__(self, context: TenantContext):
        self.context = context

    def filter_by_tenant(self, resource_type: str, query: Select) -> Select:
        """
        Scope a query to the principal's tenant.

        Super-admins get the query unchanged. An unknown resource type is
        treated like a missing tenant: nothing matches.
        """
        if self.context.is_super_admin:
            return query

        column_getter = TENANT_COLUMNS.get((resource_type or "").strip().lower())
        if column_getter is None:
            logger.warning(f"No tenant scope defined for resource type {resource_type!r}")
            return query.where(false())

        if self.context.tenant_id is None:
            logger.warning(
                f"User {self.context.user_id} has no tenant; {resource_type} list is empty"
            )
            return query.where(false())

        return query.where(column_getter() == self.context.tenant_id)

    def filter_users(self, query: Select) -> Select:
        return self.filter_by_tenant("user", query)

    def filter_roles(self, query: Select) -> Select:
        return self.filter_by_tenant("role", query)

    def filter_clinics(self, query: Select) -> Select:
        return self.filter_by_tenant("clinic", query)

    def filter_subscriptions(self, query: Select) -> Select:
        return self.filter_by_tenant("subscription", query)

    def filter_invoices(self, query: Select) -> Select:
        return self.filter_by_tenant("invoice", query)

    def filter_payments(self, query: Select) -> Select:
        return self.filter_by_tenant("payment", query)

    def filter_patients(self, query: Select) -> Select:
        return self.filter_by_tenant("patient", query)

    def filter_branches(self, query: Select) -> Select:
        return self.filter_by_tenant("branch", query)
