"""Pytest configuration and fixtures for test suite."""

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional
from uuid import uuid4

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment BEFORE any other imports
os.environ.setdefault("AUTHZ_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from authz.cache import PermissionCache  # noqa: E402
from authz.catalog import seed_permissions  # noqa: E402
from authz.context import TenantContext  # noqa: E402
from authz.evaluator import AuthorizationFacade  # noqa: E402
from authz.models import Permission, Role, RolePermission  # noqa: E402
from authz.policies import ResourcePolicyRegistry  # noqa: E402
from authz.service import PermissionService  # noqa: E402
from authz.store import PermissionStore  # noqa: E402
from config.settings import AuthzSettings  # noqa: E402
from database.async_engine import init_models  # noqa: E402
from database.models import (  # noqa: E402
    Clinic, Invoice, Patient, Payment, Subscription, SubscriptionStatus, User,
)


TEST_JWT_SECRET = "test-secret-key-with-at-least-32-characters"


def _reset_db_modules():
    """Reset database module globals to ensure clean state."""
    import database.async_engine as module
    module._async_engine = None
    module._async_session_factory = None


@pytest.fixture(autouse=True)
def reset_database_globals():
    """Reset database module globals before and after each test."""
    _reset_db_modules()
    yield
    _reset_db_modules()


# =============================================================================
# CLOCK
# =============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def authz_settings():
    """Settings with a token secret configured."""
    return AuthzSettings(jwt_secret=TEST_JWT_SECRET)


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


# =============================================================================
# SAMPLE CLINICS
# =============================================================================

ADMIN_GRANTS = (
    "Users.View",
    "Roles.View",
    "Patients.View",
    "Subscriptions.View",
    "Payments.View",
    "Invoices.View",
    "AppPermissions.View",
    "AppPermissions.ViewOwn",
    "AppPermissions.ViewUserPermissions",
    "AppPermissions.Assign",
    "AppPermissions.Revoke",
)

DOCTOR_GRANTS = (
    "Patients.View",
    "Patients.ViewDetails",
    "AppPermissions.ViewOwn",
)


@dataclass
class ClinicWorld:
    """Two clinics with staff, roles, patients and billing records."""
    clinic_a: Clinic
    clinic_b: Clinic
    permissions: Dict[str, Permission]
    admin_role_a: Role
    doctor_role_a: Role
    admin_role_b: Role
    system_role: Role
    super_role: Role
    admin_a: User
    doctor_a: User
    admin_b: User
    super_admin: User
    patient_a: Patient
    patient_b: Patient
    subscription_a: Subscription
    subscription_b: Subscription
    invoice_a: Invoice
    payment_a: Payment

    def permission(self, name: str) -> Permission:
        return self.permissions[name]

    def context_for(self, user: User, **overrides) -> TenantContext:
        is_super_admin = user.id == self.super_admin.id
        values = dict(
            user_id=user.id,
            role_id=user.role_id,
            tenant_id=user.clinic_id,
            is_super_admin=is_super_admin,
            role_name="SuperAdmin" if is_super_admin else None,
        )
        values.update(overrides)
        return TenantContext(**values)

    def token_for(self, user: User, **claims) -> str:
        payload = {
            "sub": str(user.id),
            "role_id": str(user.role_id) if user.role_id else None,
            "role": "SuperAdmin" if user.id == self.super_admin.id else "Staff",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=15),
        }
        if user.clinic_id is not None:
            payload["clinic_id"] = str(user.clinic_id)
        payload.update(claims)
        return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")

    def headers_for(self, user: User, **claims) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token_for(user, **claims)}"}


def _add_role(
    session: AsyncSession,
    permissions: Dict[str, Permission],
    name: str,
    clinic: Optional[Clinic],
    grants: Iterable[str],
    is_system_role: bool = False,
) -> Role:
    role = Role(
        id=uuid4(),
        name=name,
        clinic_id=clinic.id if clinic is not None else None,
        is_system_role=is_system_role,
        is_template=False,
    )
    session.add(role)
    for grant in grants:
        session.add(RolePermission(role_id=role.id, permission_id=permissions[grant].id))
    return role


def _add_user(session: AsyncSession, email: str, role: Role, clinic: Optional[Clinic]) -> User:
    user = User(
        id=uuid4(),
        email=email,
        full_name=email.split("@")[0].title(),
        role_id=role.id,
        clinic_id=clinic.id if clinic is not None else None,
    )
    session.add(user)
    return user


async def build_world(session: AsyncSession) -> ClinicWorld:
    await seed_permissions(session)
    result = await session.execute(select(Permission))
    permissions = {p.name: p for p in result.scalars().all()}

    clinic_a = Clinic(id=uuid4(), name="North Clinic")
    clinic_b = Clinic(id=uuid4(), name="South Clinic")
    session.add_all([clinic_a, clinic_b])
    await session.flush()

    admin_role_a = _add_role(session, permissions, "Clinic Admin", clinic_a, ADMIN_GRANTS)
    doctor_role_a = _add_role(session, permissions, "Doctor", clinic_a, DOCTOR_GRANTS)
    admin_role_b = _add_role(session, permissions, "Clinic Admin", clinic_b, ADMIN_GRANTS)
    system_role = _add_role(
        session, permissions, "SupportManager", None, ("Users.View",), is_system_role=True
    )
    super_role = _add_role(session, permissions, "SuperAdmin", None, (), is_system_role=True)
    await session.flush()

    admin_a = _add_user(session, "admin@north.example", admin_role_a, clinic_a)
    doctor_a = _add_user(session, "doctor@north.example", doctor_role_a, clinic_a)
    admin_b = _add_user(session, "admin@south.example", admin_role_b, clinic_b)
    super_admin = _add_user(session, "root@platform.example", super_role, None)

    patient_a = Patient(id=uuid4(), clinic_id=clinic_a.id, full_name="Ada North")
    patient_b = Patient(id=uuid4(), clinic_id=clinic_b.id, full_name="Sam South")
    subscription_a = Subscription(
        id=uuid4(), clinic_id=clinic_a.id, plan="standard", status=SubscriptionStatus.ACTIVE
    )
    subscription_b = Subscription(
        id=uuid4(), clinic_id=clinic_b.id, plan="premium", status=SubscriptionStatus.ACTIVE
    )
    session.add_all([patient_a, patient_b, subscription_a, subscription_b])
    await session.flush()

    invoice_a = Invoice(
        id=uuid4(), clinic_id=clinic_a.id, subscription_id=subscription_a.id,
        number="INV-0001", amount=120,
    )
    session.add(invoice_a)
    await session.flush()

    payment_a = Payment(id=uuid4(), clinic_id=clinic_a.id, invoice_id=invoice_a.id, amount=120)
    session.add(payment_a)
    await session.commit()

    return ClinicWorld(
        clinic_a=clinic_a,
        clinic_b=clinic_b,
        permissions=permissions,
        admin_role_a=admin_role_a,
        doctor_role_a=doctor_role_a,
        admin_role_b=admin_role_b,
        system_role=system_role,
        super_role=super_role,
        admin_a=admin_a,
        doctor_a=doctor_a,
        admin_b=admin_b,
        super_admin=super_admin,
        patient_a=patient_a,
        patient_b=patient_b,
        subscription_a=subscription_a,
        subscription_b=subscription_b,
        invoice_a=invoice_a,
        payment_a=payment_a,
    )


@pytest_asyncio.fixture
async def world(session):
    return await build_world(session)


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture
def permission_cache(clock):
    return PermissionCache(clock=clock)


@pytest.fixture
def store(session):
    return PermissionStore(session)


@pytest.fixture
def service(store, permission_cache):
    return PermissionService(store, permission_cache)


@pytest.fixture
def make_facade(service):
    """Build a facade for a principal over the shared service."""

    def factory(context: TenantContext) -> AuthorizationFacade:
        return AuthorizationFacade(context, service, ResourcePolicyRegistry())

    return factory


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def app(session, authz_settings):
    """Application bound to the test session."""
    from authz.app import create_app
    from database.async_engine import get_db_session

    app = create_app(authz_settings)

    async def override_session():
        yield session

    app.dependency_overrides[get_db_session] = override_session
    return app


@pytest_asyncio.fixture
async def http(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
