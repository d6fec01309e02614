"""
Strategy table.

The configured strategy names are resolved once, against a closed table
of implementations, when the manager is built. Nothing is looked up by
class name at switch time.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine

from tenancy.config import (
    CacheStrategyName,
    DatabaseStrategyName,
    StorageStrategyName,
    TenancyConfig,
)
from tenancy.strategies.backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend
from tenancy.strategies.cache import (
    PrefixedCacheStrategy,
    SeparateCacheStrategy,
    SharedCacheStrategy,
    StoreFactory,
    tenant_namespace,
)
from tenancy.strategies.database import SeparateDatabaseStrategy, SingleDatabaseStrategy
from tenancy.strategies.interface import (
    CacheStrategy,
    DatabaseStrategy,
    IsolationStrategy,
    StorageStrategy,
)
from tenancy.strategies.storage import (
    SeparateDiskStrategy,
    SharedStorageStrategy,
    TenantPathStorageStrategy,
)
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)

DATABASE_STRATEGIES: dict[DatabaseStrategyName, type[DatabaseStrategy]] = {
    DatabaseStrategyName.SEPARATE: SeparateDatabaseStrategy,
    DatabaseStrategyName.SINGLE: SingleDatabaseStrategy,
}

CACHE_STRATEGIES: dict[CacheStrategyName, type[CacheStrategy]] = {
    CacheStrategyName.PREFIXED: PrefixedCacheStrategy,
    CacheStrategyName.SEPARATE: SeparateCacheStrategy,
    CacheStrategyName.SHARED: SharedCacheStrategy,
}

STORAGE_STRATEGIES: dict[StorageStrategyName, type[StorageStrategy]] = {
    StorageStrategyName.TENANT_PATH: TenantPathStorageStrategy,
    StorageStrategyName.SEPARATE_DISK: SeparateDiskStrategy,
    StorageStrategyName.SHARED: SharedStorageStrategy,
}


@dataclass(frozen=True)
class IsolationStrategies:
    """The three strategies a manager drives, in application order."""

    database: DatabaseStrategy
    cache: CacheStrategy
    storage: StorageStrategy

    def ordered(self) -> list[IsolationStrategy]:
        """database, cache, storage."""
        return [self.database, self.cache, self.storage]


def _redis_namespace_factory(backend: RedisCacheBackend, prefix: str) -> StoreFactory:
    # Tenants share the connection pool, each owns a key namespace
    def factory(tenant: Tenant) -> CacheBackend:
        return RedisCacheBackend(backend.client, namespace=tenant_namespace(prefix, tenant))

    return factory


def build_strategies(
    config: TenancyConfig,
    *,
    landlord_engine: AsyncEngine | None = None,
    metadata: MetaData | None = None,
    cache_backend: CacheBackend | None = None,
    store_factory: StoreFactory | None = None,
    disks: Mapping[str, str | Path] | None = None,
    engine_options: Mapping[str, Any] | None = None,
) -> IsolationStrategies:
    """
    Instantiate the configured strategies.

    Args:
        config: Tenancy configuration
        landlord_engine: Existing landlord engine (otherwise built from
            ``config.database.landlord_url``)
        metadata: Tenant schema, created by migrate()
        cache_backend: Shared cache backend (defaults to Redis when
            ``config.cache.redis_url`` is set, in-memory otherwise)
        store_factory: Per-tenant backend factory for the separate cache strategy
        disks: Tenant id to disk root mapping for the separate disk strategy
        engine_options: Extra create_async_engine() keyword arguments
    """
    database_cls = DATABASE_STRATEGIES[config.database.strategy]
    database = database_cls(  # type: ignore[call-arg]
        config.database,
        landlord_engine=landlord_engine,
        metadata=metadata,
        engine_options=engine_options,
        enable_tracing=config.enable_tracing,
    )

    if cache_backend is None:
        if config.cache.redis_url:
            cache_backend = RedisCacheBackend(url=config.cache.redis_url)
        else:
            cache_backend = InMemoryCacheBackend()

    cache: CacheStrategy
    if config.cache.strategy is CacheStrategyName.SEPARATE:
        if store_factory is None and isinstance(cache_backend, RedisCacheBackend):
            store_factory = _redis_namespace_factory(cache_backend, config.cache.tenant_prefix)

        cache = SeparateCacheStrategy(cache_backend, config.cache, store_factory)
    else:
        cache = CACHE_STRATEGIES[config.cache.strategy](  # type: ignore[call-arg]
            cache_backend, config.cache
        )

    storage: StorageStrategy
    if config.storage.strategy is StorageStrategyName.SEPARATE_DISK:
        storage = SeparateDiskStrategy(config.storage, disks)
    else:
        storage = STORAGE_STRATEGIES[config.storage.strategy](config.storage)  # type: ignore[call-arg]

    logger.debug(
        "Isolation strategies built: "
        f"{database.name}, {cache.name}, {storage.name}",
        extra={
            "database_strategy": database.name,
            "cache_strategy": cache.name,
            "storage_strategy": storage.name,
        },
    )
    return IsolationStrategies(database=database, cache=cache, storage=storage)


__all__ = [
    "IsolationStrategies",
    "build_strategies",
    "DATABASE_STRATEGIES",
    "CACHE_STRATEGIES",
    "STORAGE_STRATEGIES",
]
