"""
Unit tests for tenant directory operations on TenancyManager.

Directory writes must invalidate detection results, and changes to the
current tenant must be reflected in the unit of work.
"""

from __future__ import annotations

import pytest

from tenancy.manager import TenancyManager
from tenancy.requests import RequestDescriptor
from tenancy.strategies import InMemoryCacheBackend
from tenancy.tenants.model import Tenant
from tests.fixtures import CountingRepository


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_and_list(self, manager: TenancyManager) -> None:
        found = await manager.find_tenant("acme")
        assert found is not None and found.name == "Tenant acme"
        assert await manager.find_tenant("ghost") is None
        assert {t.id for t in await manager.get_all_tenants()} == {"acme", "globex"}

    @pytest.mark.asyncio
    async def test_deleted_tenants_hidden_unless_requested(self, manager: TenancyManager) -> None:
        await manager.delete_tenant("globex")
        assert await manager.find_tenant("globex") is None
        assert [t.id for t in await manager.get_all_tenants()] == ["acme"]
        assert len(await manager.get_all_tenants(include_deleted=True)) == 2


class TestCreate:
    @pytest.mark.asyncio
    async def test_created_tenant_is_detectable_after_cached_miss(
        self, manager: TenancyManager
    ) -> None:
        request = RequestDescriptor(host="initech.example.com")
        assert await manager.detect_tenant(request) is None

        result = await manager.create_tenant({"id": "initech", "domain": "initech.example.com"})

        assert result.provisioning.succeeded
        tenant = await manager.detect_tenant(request)
        assert tenant is not None and tenant.id == "initech"


class TestUpdate:
    @pytest.mark.asyncio
    async def test_domain_change_invalidates_detection(
        self, manager: TenancyManager, repository: CountingRepository
    ) -> None:
        old = RequestDescriptor(host="acme.example.com")
        assert await manager.detect_tenant(old) is not None

        await manager.update_tenant("acme", domain="acme.io", subdomain="acmeco")

        assert await manager.detect_tenant(old) is None
        moved = await manager.detect_tenant(RequestDescriptor(host="acme.io"))
        assert moved is not None and moved.id == "acme"

    @pytest.mark.asyncio
    async def test_updating_current_tenant_rebinds_snapshot(
        self, manager: TenancyManager, acme: Tenant, globex: Tenant
    ) -> None:
        await manager.set_tenant(globex)
        await manager.set_tenant(acme)

        updated = await manager.update_tenant("acme", config={"billing": {"plan": "enterprise"}})

        assert manager.current() is updated
        assert manager.previous() is globex
        assert manager.require_tenant().get_config("billing.plan") == "enterprise"

    @pytest.mark.asyncio
    async def test_updating_other_tenant_leaves_context(
        self, manager: TenancyManager, acme: Tenant
    ) -> None:
        await manager.set_tenant(acme)
        await manager.update_tenant("globex", name="Globex Corp")
        assert manager.current() is acme


class TestDelete:
    @pytest.mark.asyncio
    async def test_deleting_current_tenant_returns_to_landlord(
        self, manager: TenancyManager, acme: Tenant
    ) -> None:
        await manager.set_tenant(acme)
        report = await manager.delete_tenant("acme")
        assert report.succeeded
        assert manager.current() is None
        assert manager.strategies.cache.current_prefix() is None

    @pytest.mark.asyncio
    async def test_deleted_tenant_is_no_longer_detected(self, manager: TenancyManager) -> None:
        request = RequestDescriptor(host="acme.example.com")
        assert await manager.detect_tenant(request) is not None
        await manager.delete_tenant("acme")
        assert await manager.detect_tenant(request) is None

    @pytest.mark.asyncio
    async def test_force_delete(self, manager: TenancyManager, repository: CountingRepository) -> None:
        await manager.delete_tenant("globex", force=True)
        assert await repository.get("globex") is None


class TestClearTenantCache:
    @pytest.mark.asyncio
    async def test_clears_only_that_tenant(
        self,
        manager: TenancyManager,
        cache_backend: InMemoryCacheBackend,
        acme: Tenant,
        globex: Tenant,
    ) -> None:
        await manager.cache.set("global", 1)
        await manager.execute_in_tenant(acme, manager.cache.set, "k", "a")
        await manager.execute_in_tenant(globex, manager.cache.set, "k", "g")

        assert await manager.clear_tenant_cache(acme)

        assert sorted(cache_backend.keys()) == ["global", "tenant_globex:k"]
