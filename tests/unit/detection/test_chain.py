"""
Unit tests for DetectorChain.

Tests cover:
- Priority ordering and first-match resolution
- Lookup caching, including cached misses
- Detector failures treated as misses and never cached
"""

from __future__ import annotations

import pytest

from tenancy.config import DetectionConfig, DetectionStrategy
from tenancy.detection import (
    DetectionCache,
    DetectorChain,
    DomainDetector,
    HeaderDetector,
    PathDetector,
    SubdomainDetector,
    TenantDetector,
    build_detector_chain,
)
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant
from tests.fixtures import CountingRepository


class ExplodingDetector(TenantDetector):
    strategy = DetectionStrategy.PATH
    default_priority = 1

    def extract_identifier(self, request: RequestDescriptor) -> str | None:
        raise RuntimeError("malformed request")

    async def lookup(self, identifier: str) -> Tenant | None:
        raise AssertionError("not reached")


class TestOrdering:
    def test_detectors_sorted_by_priority(self, repository: CountingRepository) -> None:
        chain = DetectorChain(
            [PathDetector(repository), DomainDetector(repository), SubdomainDetector(repository)]
        )
        assert [d.strategy for d in chain.detectors] == [
            DetectionStrategy.SUBDOMAIN,
            DetectionStrategy.DOMAIN,
            DetectionStrategy.PATH,
        ]
        assert len(chain) == 3

    def test_add_keeps_order(self, repository: CountingRepository) -> None:
        chain = DetectorChain([DomainDetector(repository)])
        chain.add(HeaderDetector(repository, priority=5))
        assert chain.detectors[0].strategy is DetectionStrategy.HEADER

    def test_build_from_config(self, repository: CountingRepository) -> None:
        config = DetectionConfig(
            strategy=DetectionStrategy.HEADER,
            detectors=(DetectionStrategy.DOMAIN,),
        )
        chain = build_detector_chain(config, repository)
        assert [d.strategy for d in chain.detectors] == [
            DetectionStrategy.DOMAIN,
            DetectionStrategy.HEADER,
        ]


class TestResolve:
    @pytest.mark.asyncio
    async def test_first_match_wins(self, repository: CountingRepository) -> None:
        chain = DetectorChain([SubdomainDetector(repository), HeaderDetector(repository)])
        request = RequestDescriptor(
            host="acme.example.com", headers={"X-Tenant-ID": "globex"}
        )
        tenant = await chain.resolve(request)
        assert tenant is not None and tenant.id == "acme"

    @pytest.mark.asyncio
    async def test_falls_through_to_later_detectors(self, repository: CountingRepository) -> None:
        chain = DetectorChain([SubdomainDetector(repository), HeaderDetector(repository)])
        request = RequestDescriptor(host="www.example.com", headers={"X-Tenant-ID": "globex"})
        tenant = await chain.resolve(request)
        assert tenant is not None and tenant.id == "globex"

    @pytest.mark.asyncio
    async def test_no_match(self, repository: CountingRepository) -> None:
        chain = DetectorChain([DomainDetector(repository)])
        assert await chain.resolve(RequestDescriptor(host="unknown.test")) is None


class TestCaching:
    @pytest.mark.asyncio
    async def test_repeat_requests_hit_cache(self, repository: CountingRepository) -> None:
        """Detection on one host within the TTL reaches the directory once."""
        chain = DetectorChain([DomainDetector(repository)])
        cache = DetectionCache(ttl=60)
        request = RequestDescriptor(host="acme.example.com")

        first = await chain.resolve(request, cache)
        second = await chain.resolve(request, cache)

        assert first is not None and second is not None
        assert first.id == second.id == "acme"
        assert repository.lookups == [("domain", "acme.example.com")]

    @pytest.mark.asyncio
    async def test_lookup_repeats_after_ttl(self, repository: CountingRepository) -> None:
        now = [0.0]
        chain = DetectorChain([DomainDetector(repository)])
        cache = DetectionCache(ttl=60, clock=lambda: now[0])
        request = RequestDescriptor(host="acme.example.com")

        await chain.resolve(request, cache)
        now[0] = 30
        await chain.resolve(request, cache)
        assert len(repository.lookups) == 1

        now[0] = 61
        tenant = await chain.resolve(request, cache)
        assert tenant is not None and tenant.id == "acme"
        assert len(repository.lookups) == 2

    @pytest.mark.asyncio
    async def test_misses_are_cached(self, repository: CountingRepository) -> None:
        chain = DetectorChain([DomainDetector(repository)])
        cache = DetectionCache(ttl=60)
        request = RequestDescriptor(host="ghost.test")

        assert await chain.resolve(request, cache) is None
        assert await chain.resolve(request, cache) is None
        assert len(repository.lookups) == 1

    @pytest.mark.asyncio
    async def test_failed_lookups_are_misses_and_not_cached(
        self, repository: CountingRepository
    ) -> None:
        chain = DetectorChain([DomainDetector(repository), HeaderDetector(repository)])
        cache = DetectionCache(ttl=60)
        request = RequestDescriptor(host="acme.example.com", headers={"X-Tenant-ID": "globex"})

        repository.fail_lookups = True
        tenant = await chain.resolve(request, cache)
        assert tenant is not None and tenant.id == "globex"

        repository.fail_lookups = False
        tenant = await chain.resolve(request, cache)
        assert tenant is not None and tenant.id == "acme"

    @pytest.mark.asyncio
    async def test_extract_errors_are_misses(self, repository: CountingRepository) -> None:
        chain = DetectorChain([ExplodingDetector(repository), DomainDetector(repository)])
        tenant = await chain.resolve(RequestDescriptor(host="acme.example.com"))
        assert tenant is not None and tenant.id == "acme"
