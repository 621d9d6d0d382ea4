"""
Permission Cache - process-level caching for permission resolution.

Three keyspaces share one store:
- Effective sets: "perm:eff:{user_id}:{role_id}" (15-min absolute TTL)
- Role grant sets: "perm:role:{role_id}" (30-min absolute TTL)
- User grant sets: "perm:user:{user_id}" (30-min absolute TTL)

Every entry also carries a sliding expiry (5 min) that is pushed forward on
each hit; whichever deadline passes first evicts the entry.

Cache Invalidation:
- Role mutation: role set plus every effective set computed for that role
- User mutation: user set plus every effective set computed for that user

Invalidation also bumps the role or user generation, so a load that started
before the mutation cannot write its result back afterwards.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from uuid import UUID
import logging
import threading

from config.settings import AuthzSettings, get_settings

logger = logging.getLogger(__name__)


Clock = Callable[[], float]


# =============================================================================
# CACHE CONFIGURATION
# =============================================================================

@dataclass
class CacheConfig:
    """Cache lifetimes in seconds."""
    effective_ttl_seconds: int = 900
    role_ttl_seconds: int = 1800
    user_ttl_seconds: int = 1800
    sliding_ttl_seconds: int = 300
    max_entries: int = 10000

    @classmethod
    def from_settings(cls, settings: AuthzSettings) -> "CacheConfig":
        return cls(
            effective_ttl_seconds=settings.effective_ttl_seconds,
            role_ttl_seconds=settings.role_ttl_seconds,
            user_ttl_seconds=settings.user_ttl_seconds,
            sliding_ttl_seconds=settings.sliding_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )


# =============================================================================
# CACHE ENTRY
# =============================================================================

@dataclass
class CacheEntry:
    """A cached value with absolute and sliding deadlines."""
    value: Any
    cached_at: float
    expires_at: float
    sliding_seconds: Optional[float] = None
    last_access: float = 0.0

    def is_expired(self, now: float) -> bool:
        """Check if either deadline has passed."""
        if now >= self.expires_at:
            return True
        if self.sliding_seconds is not None and now >= self.last_access + self.sliding_seconds:
            return True
        return False


# =============================================================================
# PROCESS-LEVEL CACHE (LRU with TTL)
# =============================================================================

class TTLCache:
    """
    Thread-safe LRU cache with absolute and sliding expiration.

    The clock is injectable so expiry can be driven deterministically.
    """

    def __init__(
        self,
        maxsize: int = 10000,
        ttl_seconds: float = 300,
        sliding_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self.sliding_seconds = sliding_seconds
        self._clock = clock or time.monotonic
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Get a value, refreshing its sliding deadline. Returns None on miss."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._cache.pop(key, None)
                self._misses += 1
                return None

            entry.last_access = now
            self._cache.move_to_end(key)
            self._hits += 1
            return entry.value

    def peek(self, key: str) -> Optional[Any]:
        """Read a live value without touching its deadlines, order or stats."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store a value with an optional per-entry absolute TTL."""
        with self._lock:
            now = self._clock()
            self._cache.pop(key, None)
            while len(self._cache) >= self.maxsize:
                self._cache.popitem(last=False)

            self._cache[key] = CacheEntry(
                value=value,
                cached_at=now,
                expires_at=now + (ttl_seconds if ttl_seconds is not None else self.ttl_seconds),
                sliding_seconds=self.sliding_seconds,
                last_access=now,
            )

    def invalidate(self, key: str) -> bool:
        """Remove entry from cache."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove all entries matching prefix."""
        return self.invalidate_where(lambda k: k.startswith(prefix))

    def invalidate_where(self, predicate: Callable[[str], bool]) -> int:
        """Remove all entries whose key satisfies predicate."""
        with self._lock:
            keys_to_remove = [k for k in self._cache if predicate(k)]
            for key in keys_to_remove:
                del self._cache[key]
            return len(keys_to_remove)

    def clear(self) -> None:
        """Clear all entries."""
        with self._lock:
            self._cache.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._cache),
                "maxsize": self.maxsize,
                "ttl_seconds": self.ttl_seconds,
                "sliding_seconds": self.sliding_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }


# =============================================================================
# GENERATIONS
# =============================================================================

class GenerationTracker:
    """
    Monotonic generation counters per key, bounded like the cache itself.

    A reader captures a generation before loading from the store and hands
    it back when writing the result; a write whose generation has moved
    since then would repopulate a set that a mutation already invalidated,
    and is dropped. An unknown key reads as the floor, which is raised to
    the generation of every key evicted from the map, so a key's
    generation never goes backwards.
    """

    def __init__(self, maxsize: int = 10000):
        self.maxsize = maxsize
        self._generations: "OrderedDict[str, int]" = OrderedDict()
        self._counter = 0
        self._floor = 0
        self._lock = threading.RLock()

    def current(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, self._floor)

    def next(self) -> int:
        """A fresh value above every generation handed out so far."""
        with self._lock:
            self._counter += 1
            return self._counter

    def bump(self, key: str) -> int:
        with self._lock:
            generation = self.next()
            self._generations.pop(key, None)
            self._generations[key] = generation
            while len(self._generations) > self.maxsize:
                _, evicted = self._generations.popitem(last=False)
                self._floor = max(self._floor, evicted)
            return generation

    def clear(self) -> None:
        """Move every key, known or not, past all earlier generations."""
        with self._lock:
            self._generations.clear()
            self._floor = self.next()

    def __len__(self) -> int:
        with self._lock:
            return len(self._generations)


# =============================================================================
# PERMISSION CACHE
# =============================================================================

EFFECTIVE_PREFIX = "perm:eff:"
ROLE_PREFIX = "perm:role:"
USER_PREFIX = "perm:user:"


def effective_key(user_id: UUID, role_id: UUID) -> str:
    return f"{EFFECTIVE_PREFIX}{user_id}:{role_id}"


def role_key(role_id: UUID) -> str:
    return f"{ROLE_PREFIX}{role_id}"


def user_key(user_id: UUID) -> str:
    return f"{USER_PREFIX}{user_id}"


@dataclass(frozen=True)
class StampedValue:
    """An effective set together with the version it was computed at."""
    value: Any
    version: int


class PermissionCache:
    """
    Keyspaced permission cache with write-through invalidation hooks.

    Role and user keys carry generations that every invalidation bumps.
    Loaders capture ``generation()`` before reading the store and pass it to
    the ``set_*`` call; a write that raced an invalidation is dropped.

    Each (user, role) pair also exposes a version stamp that changes whenever
    its effective set is recomputed or invalidated, so a client holding an
    older stamp knows its copy is stale.
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Optional[Clock] = None):
        self.config = config or CacheConfig()
        self._store = TTLCache(
            maxsize=self.config.max_entries,
            ttl_seconds=self.config.effective_ttl_seconds,
            sliding_seconds=self.config.sliding_ttl_seconds,
            clock=clock,
        )
        self._generations = GenerationTracker(maxsize=self.config.max_entries)
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Generations
    # -------------------------------------------------------------------------

    def generation(self, user_id: Optional[UUID] = None, role_id: Optional[UUID] = None) -> int:
        """Combined generation of the given role and user keys."""
        with self._lock:
            return self._generation(user_id, role_id)

    def _generation(self, user_id: Optional[UUID], role_id: Optional[UUID]) -> int:
        current = 0
        if user_id is not None:
            current = max(current, self._generations.current(user_key(user_id)))
        if role_id is not None:
            current = max(current, self._generations.current(role_key(role_id)))
        return current

    def _set_if_current(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        generation: Optional[int],
        user_id: Optional[UUID] = None,
        role_id: Optional[UUID] = None,
    ) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation(user_id, role_id):
                logger.debug(f"Dropped stale write for {key}: invalidated while loading")
                return False
            self._store.set(key, value, ttl_seconds)
            return True

    # -------------------------------------------------------------------------
    # Effective sets
    # -------------------------------------------------------------------------

    def get_effective(self, user_id: UUID, role_id: UUID) -> Optional[Any]:
        stamped = self._store.get(effective_key(user_id, role_id))
        if stamped is None:
            logger.debug(f"Effective cache miss for user {user_id} role {role_id}")
            return None
        return stamped.value

    def set_effective(
        self,
        user_id: UUID,
        role_id: UUID,
        value: Any,
        generation: Optional[int] = None,
    ) -> bool:
        """Cache an effective set. Returns False when the write was stale."""
        stamped = StampedValue(value=value, version=self._generations.next())
        return self._set_if_current(
            effective_key(user_id, role_id),
            stamped,
            self.config.effective_ttl_seconds,
            generation,
            user_id=user_id,
            role_id=role_id,
        )

    # -------------------------------------------------------------------------
    # Raw grant sets
    # -------------------------------------------------------------------------

    def get_role(self, role_id: UUID) -> Optional[Any]:
        return self._store.get(role_key(role_id))

    def set_role(self, role_id: UUID, value: Any, generation: Optional[int] = None) -> bool:
        return self._set_if_current(
            role_key(role_id), value, self.config.role_ttl_seconds, generation, role_id=role_id
        )

    def get_user(self, user_id: UUID) -> Optional[Any]:
        return self._store.get(user_key(user_id))

    def set_user(self, user_id: UUID, value: Any, generation: Optional[int] = None) -> bool:
        return self._set_if_current(
            user_key(user_id), value, self.config.user_ttl_seconds, generation, user_id=user_id
        )

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate_role(self, role_id: UUID) -> int:
        """Evict the role set and every effective set computed for the role."""
        suffix = f":{role_id}"
        with self._lock:
            self._generations.bump(role_key(role_id))
            count = int(self._store.invalidate(role_key(role_id)))
            count += self._store.invalidate_where(
                lambda k: k.startswith(EFFECTIVE_PREFIX) and k.endswith(suffix)
            )
        logger.info(f"Invalidated {count} cache entries for role {role_id}")
        return count

    def invalidate_user(self, user_id: UUID) -> int:
        """Evict the user set and every effective set computed for the user."""
        with self._lock:
            self._generations.bump(user_key(user_id))
            count = int(self._store.invalidate(user_key(user_id)))
            count += self._store.invalidate_prefix(f"{EFFECTIVE_PREFIX}{user_id}:")
        logger.info(f"Invalidated {count} cache entries for user {user_id}")
        return count

    def invalidate_global(self) -> None:
        """Invalidate all cache entries."""
        with self._lock:
            self._generations.clear()
            self._store.clear()
        logger.info("Invalidated all permission cache entries")

    # -------------------------------------------------------------------------
    # Versions
    # -------------------------------------------------------------------------

    def get_version(self, user_id: UUID, role_id: UUID) -> int:
        """Version of the pair's effective set; 0 before anything touched it."""
        with self._lock:
            stamped = self._store.peek(effective_key(user_id, role_id))
            version = self._generation(user_id, role_id)
            if stamped is not None:
                version = max(version, stamped.version)
            return version

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "process_cache": self._store.stats(),
            "tracked_generations": len(self._generations),
        }



# =============================================================================
# SINGLETON
# =============================================================================

_permission_cache: Optional[PermissionCache] = None


def get_permission_cache(settings: Optional[AuthzSettings] = None) -> PermissionCache:
    """Get singleton permission cache instance."""
    global _permission_cache
    if _permission_cache is None:
        _permission_cache = PermissionCache(
            CacheConfig.from_settings(settings or get_settings())
        )
    return _permission_cache


def reset_permission_cache() -> None:
    """Reset singleton (for testing)."""
    global _permission_cache
    _permission_cache = None
