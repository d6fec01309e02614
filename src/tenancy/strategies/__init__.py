"""
Isolation strategies.

Each strategy binds one resource to the tenant of the current unit of
work: a database engine, a cache namespace, a storage root.
"""

from tenancy.strategies.backends import (
    REDIS_AVAILABLE,
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    RedisNotAvailableError,
)
from tenancy.strategies.cache import (
    PrefixedCacheStrategy,
    SeparateCacheStrategy,
    SharedCacheStrategy,
    TenantCache,
)
from tenancy.strategies.database import SeparateDatabaseStrategy, SingleDatabaseStrategy
from tenancy.strategies.interface import (
    CacheStrategy,
    DatabaseStrategy,
    IsolationStrategy,
    MigrationOptions,
    StorageStrategy,
)
from tenancy.strategies.registry import IsolationStrategies, build_strategies
from tenancy.strategies.storage import (
    SeparateDiskStrategy,
    SharedStorageStrategy,
    StoragePathError,
    TenantPathStorageStrategy,
    TenantStorage,
)

__all__ = [
    "IsolationStrategy",
    "DatabaseStrategy",
    "CacheStrategy",
    "StorageStrategy",
    "MigrationOptions",
    "SeparateDatabaseStrategy",
    "SingleDatabaseStrategy",
    "CacheBackend",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "RedisNotAvailableError",
    "REDIS_AVAILABLE",
    "PrefixedCacheStrategy",
    "SeparateCacheStrategy",
    "SharedCacheStrategy",
    "TenantCache",
    "TenantPathStorageStrategy",
    "SeparateDiskStrategy",
    "SharedStorageStrategy",
    "TenantStorage",
    "StoragePathError",
    "IsolationStrategies",
    "build_strategies",
]
