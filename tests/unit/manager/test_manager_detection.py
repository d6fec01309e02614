"""
Unit tests for request-driven tenant resolution on TenancyManager.

Tests cover:
- detect_tenant() without switching, with and without the lookup cache
- initialize() switching to the detected or fallback tenant
- request_scope() restoring the prior state after the request
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from tenancy.config import TenancyConfig
from tenancy.detection import DetectionCache
from tenancy.exceptions import TenantNotFoundError
from tenancy.manager import TenancyManager
from tenancy.observability import SPAN_DETECT, MockTracer
from tenancy.requests import RequestDescriptor
from tenancy.strategies import IsolationStrategies
from tenancy.tenants.model import Tenant
from tests.fixtures import CountingRepository


class TestDetectTenant:
    @pytest.mark.asyncio
    async def test_detects_without_switching(self, manager: TenancyManager) -> None:
        tenant = await manager.detect_tenant(RequestDescriptor(host="acme.example.com"))
        assert tenant is not None and tenant.id == "acme"
        assert manager.current() is None

    @pytest.mark.asyncio
    async def test_uses_lookup_cache(
        self, manager: TenancyManager, repository: CountingRepository
    ) -> None:
        request = RequestDescriptor(host="acme.example.com")
        await manager.detect_tenant(request)
        await manager.detect_tenant(request)
        assert repository.lookups == [("subdomain", "acme")]

        await manager.detect_tenant(request, use_cache=False)
        assert len(repository.lookups) == 2

    @pytest.mark.asyncio
    async def test_cache_disabled_by_config(
        self,
        repository: CountingRepository,
        strategies: IsolationStrategies,
        config: TenancyConfig,
    ) -> None:
        config = replace(config, detection=replace(config.detection, cache_lookup=False))
        manager = TenancyManager(repository, strategies, config=config)
        assert manager.detection_cache is None

    @pytest.mark.asyncio
    async def test_cache_settings_come_from_config(self, manager: TenancyManager) -> None:
        cache = manager.detection_cache
        assert isinstance(cache, DetectionCache)
        assert cache.ttl == 3600

    @pytest.mark.asyncio
    async def test_detection_span(self, manager: TenancyManager, tracer: MockTracer) -> None:
        await manager.detect_tenant(RequestDescriptor(host="acme.example.com"))
        assert tracer.spans == [(SPAN_DETECT, {"tenancy.detection.host": "acme.example.com"})]


class TestInitialize:
    @pytest.mark.asyncio
    async def test_switches_to_detected_tenant(self, manager: TenancyManager) -> None:
        tenant = await manager.initialize(RequestDescriptor(host="app.test", path="/globex/x"))
        assert tenant is not None and tenant.id == "globex"
        assert manager.current() is tenant

    @pytest.mark.asyncio
    async def test_unknown_host_stays_landlord(self, manager: TenancyManager) -> None:
        """No match and no fallback: landlord, and tenant-only code refuses to run."""
        tenant = await manager.initialize(RequestDescriptor(host="unknown.example.com"))
        assert tenant is None
        assert manager.current() is None
        with pytest.raises(TenantNotFoundError):
            manager.require_tenant()

    @pytest.mark.asyncio
    async def test_fallback_tenant(
        self,
        repository: CountingRepository,
        strategies: IsolationStrategies,
        config: TenancyConfig,
    ) -> None:
        config = replace(config, detection=replace(config.detection, fallback_tenant="globex"))
        manager = TenancyManager(repository, strategies, config=config)
        tenant = await manager.initialize(RequestDescriptor(host="unknown.example.com"))
        assert tenant is not None and tenant.id == "globex"

    @pytest.mark.asyncio
    async def test_missing_fallback_is_logged(
        self,
        repository: CountingRepository,
        strategies: IsolationStrategies,
        config: TenancyConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        config = replace(config, detection=replace(config.detection, fallback_tenant="ghost"))
        manager = TenancyManager(repository, strategies, config=config)
        assert await manager.initialize(RequestDescriptor(host="unknown.example.com")) is None
        assert "Fallback tenant ghost not found" in caplog.text

    @pytest.mark.asyncio
    async def test_same_tenant_is_not_switched_again(
        self, manager: TenancyManager, tracer: MockTracer, acme: Tenant
    ) -> None:
        await manager.set_tenant(acme)
        tracer.clear()
        tenant = await manager.initialize(RequestDescriptor(host="acme.example.com"))
        assert tenant is acme
        assert tracer.span_names == [SPAN_DETECT]


class TestRequestScope:
    @pytest.mark.asyncio
    async def test_request_runs_as_detected_tenant(self, manager: TenancyManager) -> None:
        request = RequestDescriptor(host="acme.example.com")
        async with manager.request_scope(request) as tenant:
            assert tenant is not None and tenant.id == "acme"
            assert manager.strategies.cache.current_prefix() == "tenant_acme"
        assert manager.current() is None
        assert manager.strategies.cache.current_prefix() is None

    @pytest.mark.asyncio
    async def test_request_restores_on_error(self, manager: TenancyManager) -> None:
        with pytest.raises(RuntimeError):
            async with manager.request_scope(RequestDescriptor(host="globex.example.com")):
                raise RuntimeError("handler failed")
        assert manager.current() is None

    @pytest.mark.asyncio
    async def test_undetected_request_runs_as_landlord(self, manager: TenancyManager) -> None:
        async with manager.request_scope(RequestDescriptor(host="unknown.example.com")) as tenant:
            assert tenant is None
            assert manager.current() is None
