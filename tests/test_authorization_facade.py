"""Tests for the authorization facade and query scoping."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import select

from authz.context import TenantContext
from authz.evaluator import AuthorizationFacade
from authz.models import Role
from authz.policies import CANCEL, EDIT, VIEW
from authz.scoping import QueryScopeFilter
from authz.service import PermissionService
from database.models import Patient, User


class TestHas:
    """Tests for coarse permission checks."""

    @pytest.mark.asyncio
    async def test_granted_permission(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a))

        assert await facade.has("Patients.View")
        assert await facade.has("patients.view")
        assert not await facade.has("Users.View")

    @pytest.mark.asyncio
    async def test_empty_permission_denied(self, world, make_facade):
        facade = make_facade(world.context_for(world.admin_a))

        assert not await facade.has("")
        assert not await facade.has("  ")
        assert not await facade.has(None)

    @pytest.mark.asyncio
    async def test_super_admin_bypasses_grants(self, world, make_facade):
        """The super-admin role holds no grants, yet every check passes."""
        facade = make_facade(world.context_for(world.super_admin))

        assert await facade.has("Clinics.HardDelete")
        assert await facade.has("Anything.AtAll")

    @pytest.mark.asyncio
    async def test_super_admin_bypass_precedes_name_validation(self, world, make_facade):
        """The bypass is decided before the permission name is looked at."""
        facade = make_facade(world.context_for(world.super_admin))

        assert await facade.has("")
        assert await facade.has(None)
        assert await facade.can("  ", "edit", world.patient_b)

    @pytest.mark.asyncio
    async def test_unauthenticated_denied(self, make_facade):
        facade = make_facade(TenantContext.anonymous())
        assert not await facade.has("Patients.View")

    @pytest.mark.asyncio
    async def test_missing_role_denied(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a, role_id=None))
        assert not await facade.has("Patients.View")

    @pytest.mark.asyncio
    async def test_unknown_role_denied(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a, role_id=uuid4()))
        assert not await facade.has("Patients.View")

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self):
        """Only unknown-role lookups turn into denials."""
        service = MagicMock(spec=PermissionService)
        service.user_has_permission = AsyncMock(side_effect=RuntimeError("db down"))
        facade = AuthorizationFacade(TenantContext(user_id=uuid4(), role_id=uuid4()), service)

        with pytest.raises(RuntimeError):
            await facade.has("Patients.View")

    @pytest.mark.asyncio
    async def test_has_any_and_all(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a))

        assert await facade.has_any(["Users.View", "Patients.View"])
        assert not await facade.has_any(["Users.View", "Roles.View"])
        assert await facade.has_all(["Patients.View", "Patients.ViewDetails"])
        assert not await facade.has_all(["Patients.View", "Users.View"])
        assert not await facade.has_all([])


class TestCan:
    """Tests for permission plus resource policy."""

    @pytest.mark.asyncio
    async def test_same_clinic_resource(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a))
        assert await facade.can("Patients.View", VIEW, world.patient_a)

    @pytest.mark.asyncio
    async def test_other_clinic_resource_denied(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a))
        assert not await facade.can("Patients.View", VIEW, world.patient_b)

    @pytest.mark.asyncio
    async def test_permission_checked_before_policy(self, world, make_facade):
        facade = make_facade(world.context_for(world.doctor_a))
        assert not await facade.can("Patients.Delete", VIEW, world.patient_a)

    @pytest.mark.asyncio
    async def test_super_admin_crosses_tenants(self, world, make_facade):
        facade = make_facade(world.context_for(world.super_admin))
        assert await facade.can("Patients.View", VIEW, world.patient_b)

    @pytest.mark.asyncio
    async def test_subscription_owner_actions(self, world, make_facade):
        facade = make_facade(world.context_for(world.admin_a))

        assert await facade.can("Subscriptions.View", CANCEL, world.subscription_a)
        assert not await facade.can("Subscriptions.View", EDIT, world.subscription_a)
        assert not await facade.can("Subscriptions.View", VIEW, world.subscription_b)

    @pytest.mark.asyncio
    async def test_list_context_defers_to_scoping(self, world, make_facade):
        facade = make_facade(world.context_for(world.admin_a))
        assert await facade.can("Patients.View", VIEW, None, resource_type="patient")


class TestQueryScopeFilter:
    """List queries never return another tenant's rows."""

    @pytest.mark.asyncio
    async def test_scopes_to_tenant(self, world, session):
        scope = QueryScopeFilter(world.context_for(world.admin_a))

        patients = (await session.execute(scope.filter_patients(select(Patient)))).scalars().all()
        users = (await session.execute(scope.filter_users(select(User)))).scalars().all()

        assert [p.id for p in patients] == [world.patient_a.id]
        assert {u.id for u in users} == {world.admin_a.id, world.doctor_a.id}

    @pytest.mark.asyncio
    async def test_missing_tenant_yields_nothing(self, world, session):
        context = TenantContext(user_id=uuid4(), role_id=uuid4(), tenant_id=None)
        scope = QueryScopeFilter(context)

        patients = (await session.execute(scope.filter_patients(select(Patient)))).scalars().all()
        roles = (await session.execute(scope.filter_roles(select(Role)))).scalars().all()

        assert patients == []
        assert roles == []

    @pytest.mark.asyncio
    async def test_super_admin_unscoped(self, world, session):
        scope = QueryScopeFilter(world.context_for(world.super_admin))

        patients = (await session.execute(scope.filter_patients(select(Patient)))).scalars().all()

        assert {p.id for p in patients} == {world.patient_a.id, world.patient_b.id}

    @pytest.mark.asyncio
    async def test_unknown_type_yields_nothing(self, world, session):
        scope = QueryScopeFilter(world.context_for(world.admin_a))

        query = scope.filter_by_tenant("report", select(Patient))
        assert (await session.execute(query)).scalars().all() == []

    @pytest.mark.asyncio
    async def test_clinic_scope_uses_clinic_id(self, world, session):
        from database.models import Clinic

        scope = QueryScopeFilter(world.context_for(world.admin_b))

        clinics = (await session.execute(scope.filter_clinics(select(Clinic)))).scalars().all()

        assert [c.id for c in clinics] == [world.clinic_b.id]

    @pytest.mark.asyncio
    async def test_system_roles_hidden_from_clinics(self, world, session):
        scope = QueryScopeFilter(world.context_for(world.admin_a))

        roles = (await session.execute(scope.filter_roles(select(Role)))).scalars().all()

        assert {r.id for r in roles} == {world.admin_role_a.id, world.doctor_role_a.id}
