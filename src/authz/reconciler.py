"""
Permission Reconcilers - optimistic permission toggles against server truth.

A toggle is shown immediately as pending. The pending entry is removed when:
- a refreshed server snapshot agrees with the desired state
- the mutation fails (the toggle reverts and the error propagates)
- it is older than the staleness window (swept in the background)

Two variants:
- RolePermissionReconciler: a role's grant set, no inheritance
- UserPermissionReconciler: a user's grants layered on the role; revoking a
  permission inherited from the role is a no-op
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID
import logging

from config.settings import AuthzSettings, get_settings
from .store import PermissionRecord

logger = logging.getLogger(__name__)


Clock = Callable[[], float]


@dataclass
class PendingToggle:
    desired: bool
    timestamp: float


@dataclass(frozen=True)
class ServerSnapshot:
    """Last known server truth."""
    effective_ids: FrozenSet[UUID] = frozenset()
    override_ids: FrozenSet[UUID] = frozenset()


@dataclass(frozen=True)
class PermissionView:
    """One rendered checkbox."""
    id: UUID
    name: str
    description: Optional[str]
    checked: bool
    inherited: bool
    is_custom: bool
    pending: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "checked": self.checked,
            "inherited": self.inherited,
            "is_custom": self.is_custom,
            "pending": self.pending,
        }


@dataclass
class BulkToggleResult:
    """Outcome of a category toggle."""
    requested: List[UUID] = field(default_factory=list)
    failed: Dict[UUID, BaseException] = field(default_factory=dict)
    refreshed: bool = True

    @property
    def succeeded(self) -> List[UUID]:
        return [pid for pid in self.requested if pid not in self.failed]


# =============================================================================
# BASE RECONCILER
# =============================================================================

class PermissionReconciler(ABC):
    """
    Pending-toggle state machine for one permission subject.

    Runs on a single event loop. Pending state is tracked per permission id,
    so out-of-order responses for different ids do not interfere.
    """

    def __init__(
        self,
        api: Any,
        settings: Optional[AuthzSettings] = None,
        clock: Optional[Clock] = None,
    ):
        settings = settings or get_settings()
        self.api = api
        self.staleness_seconds = settings.pending_staleness_seconds
        self.sweep_interval_seconds = settings.pending_sweep_interval_seconds
        self._clock = clock or time.monotonic
        self.pending: Dict[UUID, PendingToggle] = {}
        self.snapshot = ServerSnapshot()
        self._catalog: Dict[str, List[PermissionRecord]] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Variant hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_snapshot(self) -> ServerSnapshot:
        """Load server truth."""

    @abstractmethod
    async def grant(self, permission_id: UUID) -> Any:
        ...

    @abstractmethod
    async def revoke(self, permission_id: UUID) -> Any:
        ...

    @abstractmethod
    def agrees(self, permission_id: UUID, desired: bool, snapshot: ServerSnapshot) -> bool:
        """True when the snapshot already reflects the desired state."""

    def is_inherited(self, permission_id: UUID) -> bool:
        return False

    def needs_call(self, permission_id: UUID, desired: bool) -> bool:
        """False when the mutation could not change the server state."""
        return not self.agrees(permission_id, desired, self.snapshot)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def set_catalog(self, permissions: Iterable[PermissionRecord]) -> None:
        catalog: Dict[str, List[PermissionRecord]] = {}
        for permission in permissions:
            catalog.setdefault(permission.category, []).append(permission)
        self._catalog = catalog

    async def load(self) -> None:
        """Fetch the permission catalog and the current server truth."""
        self.set_catalog(await self.api.list_permissions())
        await self.refresh()

    async def refresh(self) -> ServerSnapshot:
        """Replace server truth and clear pending entries it confirms."""
        snapshot = await self.fetch_snapshot()
        self.snapshot = snapshot
        confirmed = [
            pid for pid, toggle in self.pending.items()
            if self.agrees(pid, toggle.desired, snapshot)
        ]
        for pid in confirmed:
            del self.pending[pid]
        if confirmed:
            logger.debug(f"Server confirmed {len(confirmed)} pending toggles")
        return snapshot

    # -------------------------------------------------------------------------
    # Toggles
    # -------------------------------------------------------------------------

    async def toggle(self, permission_id: UUID, checked: bool) -> bool:
        """
        Toggle one permission optimistically.

        Returns True when a mutation was sent, False for a no-op toggle.
        Raises whatever the mutation raised, after reverting the toggle. A
        refresh failure after a successful mutation is not raised.
        """
        self._set_pending([permission_id], checked)

        if not self.needs_call(permission_id, checked):
            self.pending.pop(permission_id, None)
            logger.debug(f"Toggle of {permission_id} to {checked} needs no server call")
            return False

        try:
            await self._mutate(permission_id, checked)
        except Exception as e:
            self.pending.pop(permission_id, None)
            logger.warning(f"Toggle of {permission_id} to {checked} failed: {e}")
            raise

        await self._refresh_after_mutation()
        return True

    async def toggle_category(self, category: str, checked: bool) -> BulkToggleResult:
        """
        Toggle every permission of a category whose state actually changes.

        Mutations run concurrently; individual failures are collected and do
        not stop the others. Server truth is refreshed once all have settled.
        """
        result = BulkToggleResult()
        for permission in self._catalog.get(category, []):
            pid = permission.id
            if self.is_inherited(pid):
                continue
            if self._displayed_state(pid) == checked:
                continue
            result.requested.append(pid)

        if not result.requested:
            return result

        self._set_pending(result.requested, checked)
        outcomes = await asyncio.gather(
            *(self._mutate(pid, checked) for pid in result.requested),
            return_exceptions=True,
        )
        for pid, outcome in zip(result.requested, outcomes):
            if isinstance(outcome, BaseException):
                result.failed[pid] = outcome
                self.pending.pop(pid, None)

        if result.failed:
            logger.warning(
                f"Category {category} toggle: {len(result.failed)} of "
                f"{len(result.requested)} mutations failed"
            )

        result.refreshed = await self._refresh_after_mutation()
        return result

    async def _refresh_after_mutation(self) -> bool:
        """
        Refresh once mutations have settled.

        A failed refresh leaves the pending entries in place for the next
        refresh or the staleness sweep to settle; the mutations themselves
        already succeeded.
        """
        try:
            await self.refresh()
        except Exception as e:
            logger.warning(f"Refresh after mutation failed, {len(self.pending)} toggles stay pending: {e}")
            return False
        return True

    async def _mutate(self, permission_id: UUID, checked: bool) -> Any:
        if checked:
            return await self.grant(permission_id)
        return await self.revoke(permission_id)

    def _set_pending(self, permission_ids: Iterable[UUID], desired: bool) -> None:
        now = self._clock()
        for pid in permission_ids:
            self.pending[pid] = PendingToggle(desired=desired, timestamp=now)

    # -------------------------------------------------------------------------
    # Staleness sweep
    # -------------------------------------------------------------------------

    def sweep(self) -> int:
        """Drop pending entries older than the staleness window."""
        now = self._clock()
        stale = [
            pid for pid, toggle in self.pending.items()
            if now - toggle.timestamp > self.staleness_seconds
        ]
        for pid in stale:
            del self.pending[pid]
        if stale:
            logger.info(f"Expired {len(stale)} stale pending toggles")
        return len(stale)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the background sweep on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    def _displayed_state(self, permission_id: UUID) -> bool:
        toggle = self.pending.get(permission_id)
        if toggle is not None:
            return toggle.desired
        return permission_id in self.snapshot.effective_ids

    def is_checked(self, permission_id: UUID) -> bool:
        return self._displayed_state(permission_id)

    def categories(self) -> Dict[str, List[PermissionView]]:
        """Rendered checkbox state per category, in catalog order."""
        views: Dict[str, List[PermissionView]] = {}
        for category, permissions in self._catalog.items():
            items = []
            for permission in permissions:
                checked = self._displayed_state(permission.id)
                inherited = self.is_inherited(permission.id)
                items.append(PermissionView(
                    id=permission.id,
                    name=permission.name,
                    description=permission.description,
                    checked=checked,
                    inherited=inherited,
                    is_custom=self.is_custom(permission.id, checked, inherited),
                    pending=permission.id in self.pending,
                ))
            views[category] = items
        return views

    def is_custom(self, permission_id: UUID, checked: bool, inherited: bool) -> bool:
        return False


# =============================================================================
# VARIANTS
# =============================================================================

class RolePermissionReconciler(PermissionReconciler):
    """Reconciles a role's grant set."""

    def __init__(self, api: Any, role_id: UUID, **kwargs):
        super().__init__(api, **kwargs)
        self.role_id = role_id

    async def fetch_snapshot(self) -> ServerSnapshot:
        permissions = await self.api.get_role_permissions(self.role_id)
        return ServerSnapshot(effective_ids=frozenset(p.id for p in permissions))

    async def grant(self, permission_id: UUID) -> Any:
        return await self.api.assign_to_role(self.role_id, permission_id)

    async def revoke(self, permission_id: UUID) -> Any:
        return await self.api.remove_from_role(self.role_id, permission_id)

    def agrees(self, permission_id: UUID, desired: bool, snapshot: ServerSnapshot) -> bool:
        return (permission_id in snapshot.effective_ids) == desired


class UserPermissionReconciler(PermissionReconciler):
    """
    Reconciles a user's direct grants on top of the role.

    A permission is inherited when it is effective but not a direct grant.
    Unchecking an inherited permission cannot change the effective outcome,
    so no removal is sent and the checkbox stays checked.
    """

    def __init__(self, api: Any, user_id: UUID, **kwargs):
        super().__init__(api, **kwargs)
        self.user_id = user_id

    async def fetch_snapshot(self) -> ServerSnapshot:
        effective, overrides = await asyncio.gather(
            self.api.get_user_effective(self.user_id),
            self.api.get_user_permissions(self.user_id),
        )
        return ServerSnapshot(
            effective_ids=frozenset(p.id for p in effective),
            override_ids=frozenset(p.id for p in overrides),
        )

    async def grant(self, permission_id: UUID) -> Any:
        return await self.api.assign_to_user(self.user_id, permission_id)

    async def revoke(self, permission_id: UUID) -> Any:
        return await self.api.remove_from_user(self.user_id, permission_id)

    def agrees(self, permission_id: UUID, desired: bool, snapshot: ServerSnapshot) -> bool:
        is_override = permission_id in snapshot.override_ids
        if desired:
            return is_override and permission_id in snapshot.effective_ids
        return not is_override

    def is_inherited(self, permission_id: UUID) -> bool:
        return (
            permission_id in self.snapshot.effective_ids
            and permission_id not in self.snapshot.override_ids
        )

    def needs_call(self, permission_id: UUID, desired: bool) -> bool:
        if desired:
            return permission_id not in self.snapshot.effective_ids
        return permission_id in self.snapshot.override_ids

    def is_custom(self, permission_id: UUID, checked: bool, inherited: bool) -> bool:
        return checked and not inherited

    async def reset_to_role(self) -> int:
        """Remove every direct grant and drop all pending toggles."""
        removed = await self.api.reset_user_permissions(self.user_id)
        self.pending.clear()
        await self.refresh()
        return removed
