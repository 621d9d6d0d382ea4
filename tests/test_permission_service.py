"""Tests for the cached permission service and its store."""

import asyncio
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from authz.cache import PermissionCache
from authz.errors import ErrorCode, NotFoundError
from authz.resolver import EffectivePermissionResolver
from authz.service import PermissionService


class TestPermissionStore:
    """Tests for persistence primitives."""

    @pytest.mark.asyncio
    async def test_assign_to_role_is_idempotent(self, world, store):
        permission = world.permission("Patients.Export")

        assert await store.assign_to_role(world.doctor_role_a.id, permission.id) is True
        assert await store.assign_to_role(world.doctor_role_a.id, permission.id) is False

        names = [p.name for p in await store.get_role_permissions(world.doctor_role_a.id)]
        assert names.count("Patients.Export") == 1

    @pytest.mark.asyncio
    async def test_remove_missing_grant_reports_no_change(self, world, store):
        permission = world.permission("Patients.Export")

        assert await store.remove_from_role(world.doctor_role_a.id, permission.id) is False
        assert await store.remove_from_user(world.doctor_a.id, permission.id) is False

    @pytest.mark.asyncio
    async def test_mutations_validate_references(self, world, store):
        permission = world.permission("Patients.Export")

        with pytest.raises(NotFoundError) as role_error:
            await store.assign_to_role(uuid4(), permission.id)
        with pytest.raises(NotFoundError) as permission_error:
            await store.assign_to_user(world.doctor_a.id, uuid4())
        with pytest.raises(NotFoundError) as user_error:
            await store.assign_to_user(uuid4(), permission.id)

        assert role_error.value.code == ErrorCode.ROLE_NOT_FOUND
        assert permission_error.value.code == ErrorCode.PERMISSION_NOT_FOUND
        assert user_error.value.code == ErrorCode.USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_user_role_lookup(self, world, store):
        assert await store.get_user_role(world.doctor_a.id) == (
            world.doctor_role_a.id, world.clinic_a.id
        )
        assert await store.get_user_role(uuid4()) is None
        assert await store.get_user_ids_by_role(world.doctor_role_a.id) == [world.doctor_a.id]

    @pytest.mark.asyncio
    async def test_reset_user_permissions(self, world, store):
        for name in ("Patients.Export", "Reports.Export"):
            await store.assign_to_user(world.doctor_a.id, world.permission(name).id)

        assert await store.reset_user_permissions(world.doctor_a.id) == 2
        assert await store.get_user_permissions(world.doctor_a.id) == []
        assert await store.reset_user_permissions(world.doctor_a.id) == 0


class TestPermissionServiceReads:
    """Tests for cached resolution."""

    @pytest.mark.asyncio
    async def test_effective_permissions_are_cached(self, world, service):
        first = await service.get_effective_permissions(world.doctor_a.id, world.doctor_role_a.id)

        with patch.object(service.store, "get_role_permissions") as mock_role:
            second = await service.get_effective_permissions(
                world.doctor_a.id, world.doctor_role_a.id
            )

        assert second is first
        mock_role.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_role_raises(self, world, service):
        with pytest.raises(NotFoundError):
            await service.get_effective_permissions(world.doctor_a.id, uuid4())

    @pytest.mark.asyncio
    async def test_user_has_permission(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id

        assert await service.user_has_permission(user_id, role_id, "PATIENTS.VIEW")
        assert not await service.user_has_permission(user_id, role_id, "Users.View")
        assert not await service.user_has_permission(user_id, role_id, "   ")

    @pytest.mark.asyncio
    async def test_version_advances_when_recomputed(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        assert service.get_version(user_id, role_id) == 0

        await service.get_effective_permissions(user_id, role_id)
        first = service.get_version(user_id, role_id)
        await service.assign_to_user(user_id, world.permission("Patients.Export").id)
        await service.get_effective_permissions(user_id, role_id)

        assert first > 0
        assert service.get_version(user_id, role_id) > first


class TestPermissionServiceWriteThrough:
    """A mutation is visible to the very next read."""

    @pytest.mark.asyncio
    async def test_role_grant_visible_to_holders(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        assert not await service.user_has_permission(user_id, role_id, "Patients.Export")

        changed = await service.assign_to_role(role_id, world.permission("Patients.Export").id)

        assert changed is True
        assert await service.user_has_permission(user_id, role_id, "Patients.Export")

    @pytest.mark.asyncio
    async def test_role_revoke_visible_to_holders(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        assert await service.user_has_permission(user_id, role_id, "Patients.ViewDetails")

        await service.remove_from_role(role_id, world.permission("Patients.ViewDetails").id)

        assert not await service.user_has_permission(user_id, role_id, "Patients.ViewDetails")
        role_names = [p.name for p in await service.get_role_permissions(role_id)]
        assert "Patients.ViewDetails" not in role_names

    @pytest.mark.asyncio
    async def test_user_grant_and_revoke(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        export = world.permission("Patients.Export")
        await service.get_effective_permissions(user_id, role_id)

        await service.assign_to_user(user_id, export.id)
        assert await service.user_has_permission(user_id, role_id, "Patients.Export")

        await service.remove_from_user(user_id, export.id)
        assert not await service.user_has_permission(user_id, role_id, "Patients.Export")

    @pytest.mark.asyncio
    async def test_user_grant_does_not_affect_other_users(self, world, service):
        await service.get_effective_permissions(world.admin_a.id, world.admin_role_a.id)

        await service.assign_to_user(world.doctor_a.id, world.permission("Reports.Export").id)

        assert not await service.user_has_permission(
            world.admin_a.id, world.admin_role_a.id, "Reports.Export"
        )

    @pytest.mark.asyncio
    async def test_removing_direct_grant_keeps_role_grant(self, world, service):
        """Grants are additive: a duplicate direct grant does not shadow the role."""
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        view = world.permission("Patients.View")
        await service.assign_to_user(user_id, view.id)

        await service.remove_from_user(user_id, view.id)

        assert await service.user_has_permission(user_id, role_id, "Patients.View")

    @pytest.mark.asyncio
    async def test_reset_user_permissions(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        await service.assign_to_user(user_id, world.permission("Patients.Export").id)
        await service.get_effective_permissions(user_id, role_id)

        removed = await service.reset_user_permissions(user_id)

        assert removed == 1
        effective = await service.get_effective_permissions(user_id, role_id)
        assert sorted(effective.names) == sorted(
            p.name for p in await service.store.get_role_permissions(role_id)
        )

    @pytest.mark.asyncio
    async def test_failed_mutation_leaves_cache_untouched(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        before = await service.get_effective_permissions(user_id, role_id)

        with pytest.raises(NotFoundError):
            await service.assign_to_role(role_id, uuid4())

        assert service.cache.get_effective(user_id, role_id) is before


class TestOverlappingReadsAndMutations:
    """A read that loaded before a mutation never overwrites the mutation's invalidation."""

    @staticmethod
    def _hold_after(store, method_name, paused, resume):
        real = getattr(store, method_name)

        async def held(*args):
            result = await real(*args)
            paused.set()
            await resume.wait()
            return result

        return patch.object(store, method_name, side_effect=held)

    @pytest.mark.asyncio
    async def test_role_grant_during_read(self, world, store, permission_cache):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        reader = PermissionService(store, permission_cache)
        writer = PermissionService(store, permission_cache)
        paused, resume = asyncio.Event(), asyncio.Event()

        with self._hold_after(store, "get_user_permissions", paused, resume):
            read = asyncio.ensure_future(reader.get_effective_permissions(user_id, role_id))
            await paused.wait()
            assert await writer.assign_to_role(role_id, world.permission("Patients.Export").id)
            resume.set()
            loaded_before = await read

        assert not loaded_before.has("Patients.Export")
        assert permission_cache.get_effective(user_id, role_id) is None
        assert await writer.user_has_permission(user_id, role_id, "Patients.Export")

    @pytest.mark.asyncio
    async def test_user_grant_during_read(self, world, store, permission_cache):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        reader = PermissionService(store, permission_cache)
        writer = PermissionService(store, permission_cache)
        paused, resume = asyncio.Event(), asyncio.Event()

        with self._hold_after(store, "get_user_permissions", paused, resume):
            read = asyncio.ensure_future(reader.get_effective_permissions(user_id, role_id))
            await paused.wait()
            assert await writer.assign_to_user(user_id, world.permission("Reports.Export").id)
            resume.set()
            await read

        assert permission_cache.get_user(user_id) is None
        assert await writer.user_has_permission(user_id, role_id, "Reports.Export")

    @pytest.mark.asyncio
    async def test_role_set_load_during_revoke(self, world, store, permission_cache):
        role_id = world.doctor_role_a.id
        reader = PermissionService(store, permission_cache)
        writer = PermissionService(store, permission_cache)
        paused, resume = asyncio.Event(), asyncio.Event()

        with self._hold_after(store, "get_role_permissions", paused, resume):
            read = asyncio.ensure_future(reader.get_role_permissions(role_id))
            await paused.wait()
            await writer.remove_from_role(role_id, world.permission("Patients.View").id)
            resume.set()
            await read

        names = [p.name for p in await writer.get_role_permissions(role_id)]
        assert "Patients.View" not in names


class TestResolverDelegation:
    """Cache misses recompute through the effective-permission resolver."""

    @pytest.mark.asyncio
    async def test_miss_uses_resolver_once(self, world, service):
        user_id, role_id = world.doctor_a.id, world.doctor_role_a.id
        assert isinstance(service.resolver, EffectivePermissionResolver)

        with patch.object(
            service.resolver, "get_effective", wraps=service.resolver.get_effective
        ) as resolve:
            await service.get_effective_permissions(user_id, role_id)
            await service.get_effective_permissions(user_id, role_id)

        resolve.assert_awaited_once_with(user_id, role_id)

    @pytest.mark.asyncio
    async def test_recompute_reuses_cached_role_set(self, world, store, service):
        role_id = world.doctor_role_a.id

        with patch.object(
            store, "get_role_permissions", wraps=store.get_role_permissions
        ) as load_role:
            await service.get_effective_permissions(world.doctor_a.id, role_id)
            await service.get_effective_permissions(uuid4(), role_id)

        load_role.assert_awaited_once_with(role_id)

    @pytest.mark.asyncio
    async def test_unknown_role_raises_through_resolver(self, world, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.get_effective_permissions(world.doctor_a.id, uuid4())

        assert exc_info.value.code == ErrorCode.ROLE_NOT_FOUND


class TestCacheFaults:
    """A failing cache degrades to direct store reads."""

    @pytest.mark.asyncio
    async def test_read_fault_falls_back_to_store(self, world, store):
        cache = MagicMock(spec=PermissionCache)
        cache.get_effective.side_effect = RuntimeError("cache down")
        cache.get_role.side_effect = RuntimeError("cache down")
        cache.get_user.side_effect = RuntimeError("cache down")
        cache.set_effective.side_effect = RuntimeError("cache down")
        cache.generation.side_effect = RuntimeError("cache down")
        service = PermissionService(store, cache)

        assert await service.user_has_permission(
            world.doctor_a.id, world.doctor_role_a.id, "Patients.View"
        )

    @pytest.mark.asyncio
    async def test_version_fault_reads_as_zero(self, world, store):
        cache = MagicMock(spec=PermissionCache)
        cache.get_version.side_effect = RuntimeError("cache down")
        service = PermissionService(store, cache)

        assert service.get_version(world.doctor_a.id, world.doctor_role_a.id) == 0

    @pytest.mark.asyncio
    async def test_invalidation_fault_propagates(self, world, store):
        """A mutation whose cache eviction fails must not report success."""
        cache = MagicMock(spec=PermissionCache)
        cache.invalidate_role.side_effect = RuntimeError("cache down")
        service = PermissionService(store, cache)

        with pytest.raises(RuntimeError):
            await service.assign_to_role(
                world.doctor_role_a.id, world.permission("Patients.Export").id
            )
