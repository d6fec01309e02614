"""
Detection lookup cache.

Caches the outcome of a detector lookup keyed by strategy and identifier,
so repeated requests for the same host do not hit the tenant directory.
Misses are cached too (as NOT_FOUND) so unknown hosts are cheap.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from tenancy.config import DetectionStrategy
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)


class _NotFound:
    """Sentinel type for a cached negative lookup."""

    _instance: _NotFound | None = None

    def __new__(cls) -> _NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND: Final = _NotFound()

CachedLookup = Tenant | _NotFound


@dataclass(frozen=True)
class _Entry:
    value: CachedLookup
    expires_at: float


class DetectionCache:
    """
    Thread-safe TTL cache for detection results.

    Args:
        ttl: Seconds an entry stays valid
        key_prefix: Prefix of every key
        clock: Monotonic time source (injectable for tests)

    Example:
        >>> cache = DetectionCache(ttl=60)
        >>> key = cache.key_for(DetectionStrategy.DOMAIN, "acme.test")
        >>> cache.put(key, acme)
        >>> cache.get(key)
        Tenant(acme)
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        key_prefix: str = "tenant_lookup",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._key_prefix = key_prefix
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.RLock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def key_for(self, strategy: DetectionStrategy, identifier: str) -> str:
        """Build the cache key for a strategy/identifier pair."""
        digest = hashlib.md5(
            f"{strategy.value}:{identifier}".encode(), usedforsecurity=False
        ).hexdigest()
        return f"{self._key_prefix}:{digest}"

    def get(self, key: str) -> CachedLookup | None:
        """
        Return the cached Tenant or NOT_FOUND, or None on a cache miss.

        Expired entries are evicted on read.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: CachedLookup) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, self._clock() + self._ttl)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_tenant(self, tenant_id: str | int) -> int:
        """
        Drop every entry that could be stale after a change to a tenant.

        Removes entries resolving to the tenant and all negative entries,
        since a created or renamed tenant may now answer a cached miss.

        Returns:
            Number of entries removed
        """
        target = str(tenant_id)
        with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.value is NOT_FOUND
                or (isinstance(entry.value, Tenant) and str(entry.value.id) == target)
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(
                f"Invalidated {len(stale)} detection cache entr(ies) for tenant {tenant_id}",
                extra={"tenant_id": tenant_id},
            )
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["DetectionCache", "NOT_FOUND", "CachedLookup"]
