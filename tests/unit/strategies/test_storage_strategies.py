"""Unit tests for storage isolation strategies and TenantStorage."""

from __future__ import annotations

from pathlib import Path

import pytest

from tenancy.config import StorageConfig
from tenancy.strategies import (
    SeparateDiskStrategy,
    SharedStorageStrategy,
    StoragePathError,
    TenantPathStorageStrategy,
    TenantStorage,
)
from tenancy.tenants.model import Tenant

ACME = Tenant(id="acme")


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(base_path=str(tmp_path / "storage"))


class TestTenantPathStorageStrategy:
    def test_root_layout(self, storage_config: StorageConfig, tmp_path: Path) -> None:
        strategy = TenantPathStorageStrategy(storage_config)
        assert strategy.root_for(ACME) == tmp_path / "storage" / "tenants" / "acme"

    def test_path_pattern(self, tmp_path: Path) -> None:
        config = StorageConfig(base_path=str(tmp_path), path_pattern="org-{tenant_id}")
        assert TenantPathStorageStrategy(config).root_for(ACME).name == "org-acme"

    def test_unsafe_tenant_id_rejected(self, storage_config: StorageConfig) -> None:
        with pytest.raises(StoragePathError):
            TenantPathStorageStrategy(storage_config).root_for(Tenant(id="../escape"))

    @pytest.mark.asyncio
    async def test_apply_and_remove(self, storage_config: StorageConfig) -> None:
        strategy = TenantPathStorageStrategy(storage_config)
        await strategy.apply(ACME)
        assert strategy.current_root() == strategy.root_for(ACME)
        await strategy.remove()
        assert strategy.current_root() == strategy.base_root

    @pytest.mark.asyncio
    async def test_create_and_remove_directories(self, storage_config: StorageConfig) -> None:
        strategy = TenantPathStorageStrategy(storage_config)
        assert await strategy.create_tenant_directories(ACME)
        root = strategy.root_for(ACME)
        for directory in storage_config.tenant_directories:
            assert (root / directory).is_dir()
        # Idempotent
        assert await strategy.create_tenant_directories(ACME)

        assert await strategy.remove_tenant_storage(ACME)
        assert not root.exists()
        assert await strategy.remove_tenant_storage(ACME)

    @pytest.mark.asyncio
    async def test_create_failure_reported(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")
        strategy = TenantPathStorageStrategy(StorageConfig(base_path=str(blocker)))
        assert await strategy.create_tenant_directories(ACME) is False


class TestSeparateDiskStrategy:
    def test_default_disk_root(self, storage_config: StorageConfig, tmp_path: Path) -> None:
        strategy = SeparateDiskStrategy(storage_config)
        assert strategy.root_for(ACME) == tmp_path / "storage" / "disks" / "acme"

    def test_explicit_disks(self, storage_config: StorageConfig, tmp_path: Path) -> None:
        strategy = SeparateDiskStrategy(storage_config, disks={"acme": tmp_path / "nfs" / "acme"})
        assert strategy.root_for(ACME) == tmp_path / "nfs" / "acme"

    def test_disks_root_setting(self, tmp_path: Path) -> None:
        config = StorageConfig(base_path=str(tmp_path), disks_root=str(tmp_path / "volumes"))
        assert SeparateDiskStrategy(config).root_for(ACME) == tmp_path / "volumes" / "acme"


class TestSharedStorageStrategy:
    @pytest.mark.asyncio
    async def test_everyone_shares_base(self, storage_config: StorageConfig) -> None:
        strategy = SharedStorageStrategy(storage_config)
        await strategy.apply(ACME)
        assert strategy.current_root() == strategy.base_root
        assert await strategy.remove_tenant_storage(ACME) is False


class TestTenantStorage:
    @pytest.mark.asyncio
    async def test_reads_and_writes_under_current_root(self, storage_config: StorageConfig) -> None:
        strategy = TenantPathStorageStrategy(storage_config)
        storage = TenantStorage(strategy)
        await strategy.apply(ACME)

        path = await storage.write_text("uploads/readme.txt", "hello")

        assert path.is_relative_to(strategy.root_for(ACME).resolve())
        assert await storage.read_text("uploads/readme.txt") == "hello"
        assert await storage.exists("uploads/readme.txt")
        assert await storage.delete("uploads/readme.txt")
        assert not await storage.delete("uploads/readme.txt")

    @pytest.mark.asyncio
    async def test_tenants_do_not_see_each_other(self, storage_config: StorageConfig) -> None:
        strategy = TenantPathStorageStrategy(storage_config)
        storage = TenantStorage(strategy)
        await strategy.apply(ACME)
        await storage.write_bytes("secret.bin", b"\x00")
        await strategy.apply(Tenant(id="globex"))
        assert not await storage.exists("secret.bin")

    @pytest.mark.parametrize("relative", ["../globex/secret.bin", "/etc/passwd", "a/../../x"])
    def test_traversal_rejected(self, storage_config: StorageConfig, relative: str) -> None:
        storage = TenantStorage(TenantPathStorageStrategy(storage_config))
        with pytest.raises(StoragePathError):
            storage.path(relative)
