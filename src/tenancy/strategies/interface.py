"""
Isolation strategy contracts.

A strategy binds one kind of resource (database, cache namespace, storage
root) to the tenant of the current unit of work. Bindings live in
ContextVars owned by the strategy, so concurrent requests and tasks never
share a mutated handle.

TenancyManager applies strategies in order (database, cache, storage)
and, on failure, re-applies the previous tenant (or calls remove() for
landlord) on the strategies that already switched.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from tenancy.strategies.backends import CacheBackend
    from tenancy.tenants.model import Tenant


class IsolationStrategy(ABC):
    """Common surface the manager drives during a context switch."""

    @abstractmethod
    async def apply(self, tenant: Tenant) -> None:
        """Bind the tenant's resource to the current unit of work."""

    @abstractmethod
    async def remove(self) -> None:
        """Bind the landlord resource to the current unit of work."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class MigrationOptions:
    """
    Options for DatabaseStrategy.migrate().

    Attributes:
        fresh: Drop every table before migrating
        seed: Run seeders after migrating
    """

    fresh: bool = False
    seed: bool = False


class DatabaseStrategy(IsolationStrategy):
    """
    Database isolation.

    Provisioning operations (exists, create, drop, migrate, seed) return a
    bool and log failures. With ``raise_errors=True`` they raise
    ProvisioningError carrying the driver error instead.
    """

    @abstractmethod
    def current_engine(self) -> AsyncEngine:
        """Engine bound to the current unit of work (landlord when none)."""

    @abstractmethod
    def connection_config(self, tenant: Tenant) -> dict[str, Any]:
        """Connection parameters used for the tenant's engine."""

    @abstractmethod
    def database_name(self, tenant: Tenant) -> str:
        """Name of the tenant's database."""

    @abstractmethod
    async def exists(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        """Whether the tenant's database exists."""

    @abstractmethod
    async def create(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        """Create the tenant's database. Idempotent."""

    @abstractmethod
    async def drop(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        """Drop the tenant's database. Idempotent."""

    @abstractmethod
    async def migrate(
        self,
        tenant: Tenant,
        options: MigrationOptions | None = None,
        *,
        raise_errors: bool = False,
    ) -> bool:
        """Bring the tenant's schema up to date."""

    @abstractmethod
    async def seed(
        self,
        tenant: Tenant,
        options: Mapping[str, Any] | None = None,
        *,
        raise_errors: bool = False,
    ) -> bool:
        """Run seeders against the tenant's database."""

    async def dispose(self) -> None:
        """Close any engines the strategy owns."""


class CacheStrategy(IsolationStrategy):
    """Cache namespace isolation."""

    @abstractmethod
    def current_store(self) -> CacheBackend:
        """Backend bound to the current unit of work."""

    @abstractmethod
    def current_prefix(self) -> str | None:
        """Key prefix bound to the current unit of work (None = global)."""

    @abstractmethod
    def prefix_for(self, tenant: Tenant) -> str | None:
        """Key prefix used for the tenant, None if keys are not prefixed."""

    def tenant_key(self, tenant: Tenant, key: str) -> str:
        """Physical key for a tenant's logical key."""
        prefix = self.prefix_for(tenant)
        return f"{prefix}:{key}" if prefix else key

    @abstractmethod
    async def clear(self, tenant: Tenant) -> bool:
        """Flush only the tenant's namespace. Never touches the global one."""


class StorageStrategy(IsolationStrategy):
    """File storage root isolation."""

    @abstractmethod
    def current_root(self) -> Path:
        """Storage root bound to the current unit of work."""

    @abstractmethod
    def root_for(self, tenant: Tenant) -> Path:
        """Storage root for the tenant."""

    @abstractmethod
    async def create_tenant_directories(
        self, tenant: Tenant, *, raise_errors: bool = False
    ) -> bool:
        """Create the tenant root and its standard subdirectories. Idempotent."""

    @abstractmethod
    async def remove_tenant_storage(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        """Delete the tenant's files (hard-delete teardown)."""


__all__ = [
    "IsolationStrategy",
    "MigrationOptions",
    "DatabaseStrategy",
    "CacheStrategy",
    "StorageStrategy",
]
