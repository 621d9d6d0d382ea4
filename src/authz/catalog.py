"""
Permission Catalog - permission names, default roles and seeding.

Provides:
- PERMISSION_CATEGORIES: category -> ordered permission definitions
- PermissionCatalog: case-insensitive in-memory lookups
- SYSTEM_ROLES: platform roles and clinic role templates
- Idempotent seeding of permissions and roles
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Permission, Role, RolePermission

logger = logging.getLogger(__name__)


# =============================================================================
# PERMISSION TABLE
# =============================================================================

@dataclass(frozen=True)
class PermissionDefinition:
    """Definition of a permission."""
    name: str
    description: str

    @property
    def category(self) -> str:
        return self.name.split(".", 1)[0]

    @property
    def action(self) -> str:
        return self.name.split(".", 1)[1]


def _define(category: str, *entries: Tuple[str, str]) -> Tuple[PermissionDefinition, ...]:
    return tuple(
        PermissionDefinition(name=f"{category}.{action}", description=description)
        for action, description in entries
    )


PERMISSION_CATEGORIES: Dict[str, Tuple[PermissionDefinition, ...]] = {
    # Platform-wide clinic administration
    "Clinics": _define(
        "Clinics",
        ("ViewAll", "View every clinic on the platform"),
        ("ViewActive", "View active clinics"),
        ("Search", "Search clinics"),
        ("Create", "Register a new clinic"),
        ("Edit", "Edit any clinic"),
        ("Delete", "Soft-delete a clinic"),
        ("HardDelete", "Permanently delete a clinic"),
        ("ManageStatus", "Activate or suspend clinics"),
        ("ViewStats", "View clinic statistics"),
    ),
    # Own clinic
    "Clinic": _define(
        "Clinic",
        ("View", "View own clinic profile"),
        ("Edit", "Edit own clinic profile"),
        ("ViewSettings", "View clinic settings"),
        ("EditSettings", "Edit clinic settings"),
        ("ManageBranches", "Create and edit clinic branches"),
    ),
    "Subscriptions": _define(
        "Subscriptions",
        ("ViewAll", "View all subscriptions"),
        ("View", "View clinic subscription"),
        ("Create", "Create subscriptions"),
        ("Edit", "Edit subscription terms"),
        ("Delete", "Soft-delete subscriptions"),
        ("HardDelete", "Permanently delete subscriptions"),
        ("ChangeStatus", "Change subscription status"),
        ("Renew", "Renew a subscription"),
        ("ViewActive", "View active subscriptions"),
        ("ToggleAutoRenew", "Enable or disable auto-renewal"),
    ),
    "Users": _define(
        "Users",
        ("View", "View clinic users"),
        ("ViewAll", "View users across all clinics"),
        ("ViewDetails", "View user details"),
        ("Create", "Create users"),
        ("Edit", "Edit users"),
        ("Delete", "Soft-delete users"),
        ("HardDelete", "Permanently delete users"),
        ("Activate", "Activate or deactivate users"),
        ("ChangeRole", "Change a user's role"),
        ("ResetPassword", "Reset a user's password"),
        ("ManagePermissions", "Grant or revoke per-user permissions"),
        ("Restore", "Restore deleted users"),
    ),
    "Roles": _define(
        "Roles",
        ("ViewAll", "View all roles"),
        ("ViewSystem", "View system roles"),
        ("ViewTemplates", "View role templates"),
        ("ViewClinic", "View clinic roles"),
        ("View", "View roles"),
        ("Create", "Create roles"),
        ("Clone", "Clone a role template"),
        ("Edit", "Edit roles"),
        ("Delete", "Soft-delete roles"),
        ("HardDelete", "Permanently delete roles"),
        ("Restore", "Restore deleted roles"),
    ),
    "AppPermissions": _define(
        "AppPermissions",
        ("View", "View the permission catalog"),
        ("ViewOwn", "View own permissions"),
        ("ViewUserPermissions", "View another user's permissions"),
        ("Create", "Create permissions"),
        ("Edit", "Edit permissions"),
        ("Delete", "Delete permissions"),
        ("Manage", "Manage role and user grants"),
        ("Assign", "Assign permissions"),
        ("Revoke", "Revoke permissions"),
    ),
    "Patients": _define(
        "Patients",
        ("View", "View patients"),
        ("ViewDetails", "View patient details"),
        ("Create", "Register patients"),
        ("Edit", "Edit patients"),
        ("Delete", "Soft-delete patients"),
        ("HardDelete", "Permanently delete patients"),
        ("ViewMedicalHistory", "View medical history"),
        ("EditMedicalHistory", "Edit medical history"),
        ("ViewDocuments", "View patient documents"),
        ("UploadDocuments", "Upload patient documents"),
        ("Export", "Export patient data"),
    ),
    "Appointments": _define(
        "Appointments",
        ("View", "View appointments"),
        ("Create", "Book appointments"),
        ("Edit", "Reschedule appointments"),
        ("Cancel", "Cancel appointments"),
        ("CheckIn", "Check patients in"),
        ("ViewCalendar", "View the appointment calendar"),
    ),
    "MedicalRecords": _define(
        "MedicalRecords",
        ("View", "View medical records"),
        ("Create", "Create medical records"),
        ("Edit", "Edit medical records"),
        ("Delete", "Soft-delete medical records"),
        ("HardDelete", "Permanently delete medical records"),
        ("Prescribe", "Write prescriptions"),
        ("ViewPrescriptions", "View prescriptions"),
    ),
    "Payments": _define(
        "Payments",
        ("View", "View payments"),
        ("Create", "Record payments"),
        ("Edit", "Edit payments"),
        ("Delete", "Soft-delete payments"),
        ("HardDelete", "Permanently delete payments"),
        ("Process", "Process payments"),
        ("Refund", "Refund payments"),
        ("ViewReports", "View payment reports"),
    ),
    "Invoices": _define(
        "Invoices",
        ("View", "View invoices"),
        ("Create", "Create invoices"),
        ("Edit", "Edit invoices"),
        ("Send", "Send invoices"),
        ("ViewReports", "View invoice reports"),
    ),
    "Reports": _define(
        "Reports",
        ("ViewDashboard", "View the dashboard"),
        ("ViewPatientReports", "View patient reports"),
        ("ViewFinancialReports", "View financial reports"),
        ("ViewAppointmentReports", "View appointment reports"),
        ("Export", "Export reports"),
        ("Generate", "Generate reports"),
    ),
    "Settings": _define(
        "Settings",
        ("View", "View settings"),
        ("Edit", "Edit settings"),
        ("ManageRoles", "Manage roles from settings"),
    ),
    "AuditLogs": _define(
        "AuditLogs",
        ("View", "View audit logs"),
        ("Export", "Export audit logs"),
    ),
    "System": _define(
        "System",
        ("ManageSettings", "Manage platform settings"),
        ("ViewLogs", "View system logs"),
        ("ManageRoles", "Manage system roles"),
    ),
}


class PermissionCatalog:
    """
    In-memory catalog of permission definitions.

    Used for quick lookups without database queries. Name lookups ignore case.
    """

    def __init__(self, categories: Optional[Dict[str, Tuple[PermissionDefinition, ...]]] = None):
        categories = categories if categories is not None else PERMISSION_CATEGORIES
        self._by_category: Dict[str, Tuple[PermissionDefinition, ...]] = dict(categories)
        self._permissions: Dict[str, PermissionDefinition] = {
            p.name.lower(): p
            for definitions in self._by_category.values()
            for p in definitions
        }

    def get(self, name: str) -> Optional[PermissionDefinition]:
        """Get permission definition by name."""
        return self._permissions.get(name.strip().lower())

    def get_by_category(self, category: str) -> List[PermissionDefinition]:
        """Get all permissions in a category."""
        return list(self._by_category.get(category, ()))

    def categories(self) -> List[str]:
        return list(self._by_category)

    def get_all(self) -> List[PermissionDefinition]:
        """Get all permission definitions."""
        return list(self._permissions.values())

    def exists(self, name: str) -> bool:
        """Check if permission name exists."""
        return self.get(name) is not None


# Singleton instance
_permission_catalog: Optional[PermissionCatalog] = None


def get_permission_catalog() -> PermissionCatalog:
    """Get singleton permission catalog."""
    global _permission_catalog
    if _permission_catalog is None:
        _permission_catalog = PermissionCatalog()
    return _permission_catalog


# =============================================================================
# SYSTEM ROLE CATALOG
# =============================================================================

ALL_PERMISSIONS = "*"


@dataclass
class RoleDefinition:
    """Definition of a default role."""
    name: str
    description: str
    is_system_role: bool
    is_template: bool
    permissions: List[str] = field(default_factory=list)


SYSTEM_ROLES: List[RoleDefinition] = [
    # Platform roles
    RoleDefinition(
        name="SuperAdmin",
        description="Full system access with unrestricted permissions",
        is_system_role=True,
        is_template=False,
        permissions=[ALL_PERMISSIONS],
    ),
    RoleDefinition(
        name="SupportManager",
        description="Customer support; views clinics and assists users",
        is_system_role=True,
        is_template=False,
        permissions=[
            "Clinics.ViewAll", "Clinics.ViewActive", "Clinics.Search", "Clinics.ViewStats",
            "Users.View", "Users.ViewAll", "Users.ViewDetails", "Users.ResetPassword",
            "Roles.View", "AuditLogs.View",
        ],
    ),
    RoleDefinition(
        name="BillingManager",
        description="Billing and subscription management; handles payments and renewals",
        is_system_role=True,
        is_template=False,
        permissions=[
            "Clinics.ViewAll", "Clinics.Search",
            "Subscriptions.ViewAll", "Subscriptions.View", "Subscriptions.Renew",
            "Subscriptions.ChangeStatus", "Subscriptions.ToggleAutoRenew",
            "Payments.View", "Payments.Process", "Payments.Refund", "Payments.ViewReports",
            "Invoices.View", "Invoices.Create", "Invoices.Send", "Invoices.ViewReports",
        ],
    ),
    # Clinic templates
    RoleDefinition(
        name="Clinic Admin",
        description="Full clinic management; manages staff, patients and settings",
        is_system_role=False,
        is_template=True,
        permissions=[
            "Clinic.View", "Clinic.Edit", "Clinic.ViewSettings", "Clinic.EditSettings",
            "Clinic.ManageBranches",
            "Subscriptions.View", "Subscriptions.Renew",
            "Users.View", "Users.ViewDetails", "Users.Create", "Users.Edit", "Users.Delete",
            "Users.ChangeRole", "Users.ResetPassword",
            "Patients.View", "Patients.ViewDetails", "Patients.Create", "Patients.Edit",
            "Patients.ViewMedicalHistory", "Patients.EditMedicalHistory",
            "Appointments.View", "Appointments.Create", "Appointments.Edit", "Appointments.Cancel",
            "Payments.View", "Payments.Create", "Payments.ViewReports",
            "Reports.ViewDashboard", "Reports.ViewPatientReports", "Reports.Export",
        ],
    ),
    RoleDefinition(
        name="Doctor",
        description="Medical practitioner; provides patient care and manages medical records",
        is_system_role=False,
        is_template=True,
        permissions=[
            "Patients.View", "Patients.ViewDetails", "Patients.ViewMedicalHistory",
            "MedicalRecords.View", "MedicalRecords.Create", "MedicalRecords.Edit",
            "MedicalRecords.Prescribe",
            "Appointments.View", "Appointments.CheckIn",
        ],
    ),
    RoleDefinition(
        name="Nurse",
        description="Nursing staff; assists with patient care and record viewing",
        is_system_role=False,
        is_template=True,
        permissions=[
            "Patients.View", "Patients.ViewDetails", "Patients.ViewMedicalHistory",
            "MedicalRecords.View", "MedicalRecords.ViewPrescriptions",
            "Appointments.View", "Appointments.CheckIn",
        ],
    ),
    RoleDefinition(
        name="Receptionist",
        description="Front desk operations; manages appointments and basic billing",
        is_system_role=False,
        is_template=True,
        permissions=[
            "Appointments.View", "Appointments.Create", "Appointments.Edit",
            "Appointments.Cancel",
            "Patients.View", "Patients.Create", "Patients.Edit",
        ],
    ),
]


# =============================================================================
# SEEDING
# =============================================================================

async def seed_permissions(
    session: AsyncSession,
    catalog: Optional[PermissionCatalog] = None,
) -> int:
    """
    Seed permissions from the catalog.

    Creates missing permissions and refreshes descriptions of existing ones.
    Returns count of permissions created.
    """
    catalog = catalog or get_permission_catalog()
    result = await session.execute(select(Permission))
    existing = {p.name.lower(): p for p in result.scalars().all()}

    created = 0
    for definition in catalog.get_all():
        permission = existing.get(definition.name.lower())
        if permission is None:
            session.add(Permission(
                name=definition.name,
                category=definition.category,
                description=definition.description,
            ))
            created += 1
        else:
            permission.description = definition.description

    await session.flush()
    logger.info(f"Seeded {created} permissions ({len(existing)} already present)")
    return created


async def seed_system_roles(session: AsyncSession) -> int:
    """
    Seed platform roles and clinic templates with their default grants.

    Existing roles keep their grants; only missing grants are added.
    Returns count of grants created.
    """
    result = await session.execute(select(Permission))
    permissions = {p.name.lower(): p for p in result.scalars().all()}

    created = 0
    for definition in SYSTEM_ROLES:
        role = (await session.execute(
            select(Role).where(Role.name == definition.name, Role.clinic_id.is_(None))
        )).scalar_one_or_none()
        if role is None:
            role = Role(
                name=definition.name,
                description=definition.description,
                is_system_role=definition.is_system_role,
                is_template=definition.is_template,
            )
            session.add(role)
            await session.flush()

        if ALL_PERMISSIONS in definition.permissions:
            wanted = list(permissions.values())
        else:
            wanted = []
            for name in definition.permissions:
                permission = permissions.get(name.lower())
                if permission is None:
                    logger.warning(f"Role {definition.name} references unknown permission {name}")
                    continue
                wanted.append(permission)

        granted = set((await session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role.id)
        )).scalars().all())

        for permission in wanted:
            if permission.id not in granted:
                session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created += 1

    await session.flush()
    logger.info(f"Seeded {created} role grants")
    return created
