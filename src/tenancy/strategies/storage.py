"""
Storage isolation strategies and the tenant-aware storage facade.

- TenantPathStorageStrategy: ``{base}/{tenant_path}/{pattern}`` per tenant
- SeparateDiskStrategy: a dedicated disk root per tenant
- SharedStorageStrategy: no isolation
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Mapping
from contextvars import ContextVar
from pathlib import Path

from tenancy.config import StorageConfig
from tenancy.exceptions import ProvisioningError, TenancyError
from tenancy.strategies.interface import StorageStrategy
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)


class StoragePathError(TenancyError):
    """Raised when a storage path resolves outside the active root."""


class _RootedStorageStrategy(StorageStrategy):
    def __init__(self, config: StorageConfig | None = None) -> None:
        self._config = config or StorageConfig()
        self._base = Path(self._config.base_path)
        self._binding: ContextVar[Path | None] = ContextVar(
            f"tenancy_storage_{id(self)}", default=None
        )

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def base_root(self) -> Path:
        """Landlord storage root."""
        return self._base

    def current_root(self) -> Path:
        root = self._binding.get()
        return root if root is not None else self._base

    async def apply(self, tenant: Tenant) -> None:
        root = self.root_for(tenant)
        self._binding.set(root)
        logger.debug(f"Storage root set to {root}", extra={"tenant_id": tenant.id})

    async def remove(self) -> None:
        self._binding.set(None)
        logger.debug("Storage bound to landlord root")

    def _make_directories(self, root: Path) -> None:
        root.mkdir(parents=True, exist_ok=True)
        for directory in self._config.tenant_directories:
            (root / directory).mkdir(parents=True, exist_ok=True)

    async def create_tenant_directories(
        self, tenant: Tenant, *, raise_errors: bool = False
    ) -> bool:
        root = self.root_for(tenant)
        try:
            await asyncio.to_thread(self._make_directories, root)
        except OSError as e:
            logger.warning(
                f"Could not create storage directories for tenant {tenant.id}: {e}",
                extra={"tenant_id": tenant.id, "root": str(root), "error": str(e)},
            )
            if raise_errors:
                raise ProvisioningError(tenant.id, "directories", e) from e
            return False
        logger.debug(f"Storage directories ready at {root}", extra={"tenant_id": tenant.id})
        return True

    async def remove_tenant_storage(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        root = self.root_for(tenant)
        try:
            if root.exists():
                await asyncio.to_thread(shutil.rmtree, root)
        except OSError as e:
            logger.warning(
                f"Could not remove storage for tenant {tenant.id}: {e}",
                extra={"tenant_id": tenant.id, "root": str(root), "error": str(e)},
            )
            if raise_errors:
                raise ProvisioningError(tenant.id, "remove_storage", e) from e
            return False
        logger.info(f"Removed storage for tenant {tenant.id}", extra={"tenant_id": tenant.id})
        return True


def _safe_component(tenant: Tenant, value: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise StoragePathError(f"Invalid storage directory for tenant {tenant.id}: {value!r}")
    return value


class TenantPathStorageStrategy(_RootedStorageStrategy):
    """
    Tenant roots under a shared base directory.

    Example:
        >>> strategy = TenantPathStorageStrategy(StorageConfig(base_path="/srv/storage"))
        >>> strategy.root_for(acme)
        PosixPath('/srv/storage/tenants/acme')
    """

    def root_for(self, tenant: Tenant) -> Path:
        directory = _safe_component(tenant, self._config.path_pattern.format(tenant_id=tenant.id))
        return self._base / self._config.tenant_path / directory


class SeparateDiskStrategy(_RootedStorageStrategy):
    """
    A dedicated disk root per tenant.

    Args:
        config: Storage settings; ``disks_root`` is the parent of tenant
            disks (defaults to ``{base_path}/disks``)
        disks: Explicit tenant id to root mapping, checked first
    """

    def __init__(
        self,
        config: StorageConfig | None = None,
        disks: Mapping[str, str | Path] | None = None,
    ) -> None:
        super().__init__(config)
        self._disks = {str(k): Path(v) for k, v in (disks or {}).items()}
        self._disks_root = (
            Path(self._config.disks_root) if self._config.disks_root else self._base / "disks"
        )

    def root_for(self, tenant: Tenant) -> Path:
        explicit = self._disks.get(str(tenant.id))
        if explicit is not None:
            return explicit
        return self._disks_root / _safe_component(tenant, str(tenant.id))


class SharedStorageStrategy(_RootedStorageStrategy):
    """Every tenant shares the base root. Tenant storage is never deleted."""

    def root_for(self, tenant: Tenant) -> Path:
        return self._base

    async def apply(self, tenant: Tenant) -> None:
        self._binding.set(None)

    async def remove_tenant_storage(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        logger.warning(
            f"Shared storage strategy does not remove files for tenant {tenant.id}",
            extra={"tenant_id": tenant.id},
        )
        return False


class TenantStorage:
    """
    File access scoped to the current unit of work's storage root.

    Paths are resolved under the active root; anything escaping it
    (``..``, absolute paths, symlinks out) raises StoragePathError.

    Example:
        >>> storage = TenantStorage(strategy)
        >>> async with manager.tenant_scope(acme):
        ...     await storage.write_bytes("uploads/logo.png", data)
    """

    def __init__(self, strategy: StorageStrategy) -> None:
        self._strategy = strategy

    @property
    def strategy(self) -> StorageStrategy:
        return self._strategy

    @property
    def root(self) -> Path:
        return self._strategy.current_root()

    def path(self, *parts: str | Path) -> Path:
        """Resolve a path under the active root."""
        root = self._strategy.current_root().resolve()
        candidate = root.joinpath(*parts).resolve()
        if not candidate.is_relative_to(root):
            raise StoragePathError(f"Path escapes storage root: {Path(*parts)}")
        return candidate

    async def write_bytes(self, relative: str | Path, data: bytes) -> Path:
        target = self.path(relative)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        return target

    async def read_bytes(self, relative: str | Path) -> bytes:
        return await asyncio.to_thread(self.path(relative).read_bytes)

    async def write_text(self, relative: str | Path, text: str, encoding: str = "utf-8") -> Path:
        return await self.write_bytes(relative, text.encode(encoding))

    async def read_text(self, relative: str | Path, encoding: str = "utf-8") -> str:
        return (await self.read_bytes(relative)).decode(encoding)

    async def exists(self, relative: str | Path) -> bool:
        return await asyncio.to_thread(self.path(relative).exists)

    async def delete(self, relative: str | Path) -> bool:
        target = self.path(relative)
        if not target.exists():
            return False
        await asyncio.to_thread(target.unlink)
        return True


__all__ = [
    "TenantPathStorageStrategy",
    "SeparateDiskStrategy",
    "SharedStorageStrategy",
    "TenantStorage",
    "StoragePathError",
]
