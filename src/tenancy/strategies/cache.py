"""
Cache isolation strategies and the tenant-aware cache facade.

- PrefixedCacheStrategy: shared backend, keys prefixed "{tenant_prefix}_{quoted id}:"
- SeparateCacheStrategy: a dedicated backend per tenant
- SharedCacheStrategy: no isolation

Application code talks to TenantCache, which resolves the backend and key
prefix bound to the current unit of work on every call. Nothing resolved
before a switch can leak into the next tenant's namespace.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from tenancy.config import CacheConfig
from tenancy.strategies.backends import CacheBackend, InMemoryCacheBackend
from tenancy.strategies.interface import CacheStrategy
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Tenant], CacheBackend]


def tenant_namespace(prefix: str, tenant: Tenant) -> str:
    """Key namespace for a tenant: prefix plus the percent-encoded id."""
    return f"{prefix}_{quote(str(tenant.id), safe='')}"


@dataclass(frozen=True)
class _CacheBinding:
    store: CacheBackend
    prefix: str | None
    tenant_id: str | int | None = None


class _BoundCacheStrategy(CacheStrategy):
    def __init__(self, backend: CacheBackend | None = None, config: CacheConfig | None = None):
        self._backend = backend or InMemoryCacheBackend()
        self._config = config or CacheConfig()
        self._binding: ContextVar[_CacheBinding | None] = ContextVar(
            f"tenancy_cache_{id(self)}", default=None
        )

    @property
    def backend(self) -> CacheBackend:
        """The landlord (shared) backend."""
        return self._backend

    @property
    def config(self) -> CacheConfig:
        return self._config

    def current_store(self) -> CacheBackend:
        binding = self._binding.get()
        return binding.store if binding is not None else self._backend

    def current_prefix(self) -> str | None:
        binding = self._binding.get()
        return binding.prefix if binding is not None else None

    async def remove(self) -> None:
        self._binding.set(None)
        logger.debug("Cache bound to landlord namespace")


class PrefixedCacheStrategy(_BoundCacheStrategy):
    """
    Namespace a shared backend with a per-tenant key prefix.

    The tenant id is percent-encoded inside the prefix, so no id can
    produce ``:`` or a glob character there and one tenant's namespace
    is never a prefix of another's.

    Example:
        >>> strategy = PrefixedCacheStrategy(InMemoryCacheBackend())
        >>> strategy.prefix_for(acme)
        'tenant_acme'
        >>> strategy.tenant_key(acme, "settings")
        'tenant_acme:settings'
        >>> strategy.prefix_for(Tenant(id="a:b"))
        'tenant_a%3Ab'
    """

    def prefix_for(self, tenant: Tenant) -> str:
        return tenant_namespace(self._config.tenant_prefix, tenant)

    async def apply(self, tenant: Tenant) -> None:
        prefix = self.prefix_for(tenant)
        if self._config.clear_on_tenant_switch:
            await self._backend.delete_prefix(f"{prefix}:")
        self._binding.set(_CacheBinding(self._backend, prefix, tenant.id))
        logger.debug(
            f"Cache prefix set to {prefix}",
            extra={"tenant_id": tenant.id, "prefix": prefix},
        )

    async def clear(self, tenant: Tenant) -> bool:
        removed = await self._backend.delete_prefix(f"{self.prefix_for(tenant)}:")
        logger.debug(
            f"Cleared {removed} cache key(s) for tenant {tenant.id}",
            extra={"tenant_id": tenant.id, "removed": removed},
        )
        return True


class SeparateCacheStrategy(_BoundCacheStrategy):
    """
    Give every tenant its own backend.

    Args:
        backend: Landlord backend
        config: Cache settings
        store_factory: Builds a tenant's backend on first use
            (defaults to a fresh InMemoryCacheBackend)
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        config: CacheConfig | None = None,
        store_factory: StoreFactory | None = None,
    ) -> None:
        super().__init__(backend, config)
        self._store_factory = store_factory or (lambda tenant: InMemoryCacheBackend())
        self._stores: dict[str, CacheBackend] = {}
        self._stores_lock = threading.Lock()

    def prefix_for(self, tenant: Tenant) -> None:
        return None

    def store_for(self, tenant: Tenant) -> CacheBackend:
        """Return the tenant's backend, creating it on first use."""
        key = str(tenant.id)
        with self._stores_lock:
            store = self._stores.get(key)
            if store is None:
                store = self._store_factory(tenant)
                self._stores[key] = store
        return store

    async def apply(self, tenant: Tenant) -> None:
        store = self.store_for(tenant)
        if self._config.clear_on_tenant_switch:
            await store.clear()
        self._binding.set(_CacheBinding(store, None, tenant.id))
        logger.debug("Cache bound to tenant store", extra={"tenant_id": tenant.id})

    async def clear(self, tenant: Tenant) -> bool:
        await self.store_for(tenant).clear()
        return True

    async def forget(self, tenant: Tenant) -> None:
        """Drop and close the tenant's backend (hard-delete teardown)."""
        with self._stores_lock:
            store = self._stores.pop(str(tenant.id), None)
        if store is not None:
            await store.clear()
            await store.close()


class SharedCacheStrategy(_BoundCacheStrategy):
    """
    No cache isolation: every tenant reads and writes the global namespace.

    clear() refuses to run because it could only flush everyone's keys.
    """

    def prefix_for(self, tenant: Tenant) -> None:
        return None

    async def apply(self, tenant: Tenant) -> None:
        self._binding.set(None)

    async def clear(self, tenant: Tenant) -> bool:
        logger.warning(
            f"Shared cache strategy cannot clear a single tenant ({tenant.id}); nothing cleared",
            extra={"tenant_id": tenant.id},
        )
        return False


class TenantCache:
    """
    Cache facade scoped to the current unit of work.

    Example:
        >>> cache = TenantCache(strategy)
        >>> async with manager.tenant_scope(acme):
        ...     await cache.set("plan", "pro")
        >>> async with manager.tenant_scope(globex):
        ...     assert await cache.get("plan") is None
    """

    def __init__(self, strategy: CacheStrategy, default_ttl: float | None = None) -> None:
        self._strategy = strategy
        self._default_ttl = default_ttl

    @property
    def strategy(self) -> CacheStrategy:
        return self._strategy

    def _resolve(self, key: str) -> tuple[CacheBackend, str]:
        prefix = self._strategy.current_prefix()
        return self._strategy.current_store(), f"{prefix}:{key}" if prefix else key

    async def get(self, key: str, default: Any = None) -> Any:
        store, physical = self._resolve(key)
        value = await store.get(physical)
        return default if value is None else value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        store, physical = self._resolve(key)
        await store.set(physical, value, ttl if ttl is not None else self._default_ttl)

    async def delete(self, key: str) -> bool:
        store, physical = self._resolve(key)
        return await store.delete(physical)

    async def has(self, key: str) -> bool:
        store, physical = self._resolve(key)
        return await store.has(physical)

    async def remember(
        self,
        key: str,
        factory: Callable[[], Any | Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        store, physical = self._resolve(key)
        value = await store.get(physical)
        if value is not None:
            return value
        value = factory()
        if inspect.isawaitable(value):
            value = await value
        await store.set(physical, value, ttl if ttl is not None else self._default_ttl)
        return value

    async def clear(self) -> bool:
        """
        Flush the current namespace.

        Under a tenant this clears only that tenant's keys. As landlord
        it is refused and returns False, since the global namespace is
        shared by everyone.
        """
        binding_prefix = self._strategy.current_prefix()
        store = self._strategy.current_store()
        if binding_prefix:
            await store.delete_prefix(f"{binding_prefix}:")
            return True
        if isinstance(self._strategy, SeparateCacheStrategy):
            if store is not self._strategy.backend:
                await store.clear()
                return True
        logger.warning("Refusing to clear the global cache namespace")
        return False


__all__ = [
    "PrefixedCacheStrategy",
    "SeparateCacheStrategy",
    "SharedCacheStrategy",
    "TenantCache",
    "StoreFactory",
    "tenant_namespace",
]
