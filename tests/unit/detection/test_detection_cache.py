"""Unit tests for DetectionCache."""

from __future__ import annotations

import pytest

from tenancy.config import DetectionStrategy
from tenancy.detection import NOT_FOUND, DetectionCache
from tenancy.tenants.model import Tenant


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> DetectionCache:
    return DetectionCache(ttl=60, clock=clock)


class TestKeys:
    def test_keys_are_prefixed_and_distinct_per_strategy(self, cache: DetectionCache) -> None:
        domain_key = cache.key_for(DetectionStrategy.DOMAIN, "acme.test")
        header_key = cache.key_for(DetectionStrategy.HEADER, "acme.test")
        assert domain_key.startswith("tenant_lookup:")
        assert domain_key != header_key
        assert domain_key == cache.key_for(DetectionStrategy.DOMAIN, "acme.test")

    def test_custom_prefix(self) -> None:
        cache = DetectionCache(key_prefix="lookup")
        assert cache.key_for(DetectionStrategy.PATH, "acme").startswith("lookup:")

    def test_ttl_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            DetectionCache(ttl=0)


class TestExpiry:
    def test_entry_expires_after_ttl(self, cache: DetectionCache, clock: FakeClock) -> None:
        key = cache.key_for(DetectionStrategy.DOMAIN, "acme.test")
        cache.put(key, Tenant(id="acme"))

        clock.now += 59
        assert isinstance(cache.get(key), Tenant)

        clock.now += 1
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_negative_entries_are_cached(self, cache: DetectionCache) -> None:
        key = cache.key_for(DetectionStrategy.DOMAIN, "ghost.test")
        assert cache.get(key) is None
        cache.put(key, NOT_FOUND)
        assert cache.get(key) is NOT_FOUND
        assert not NOT_FOUND


class TestInvalidation:
    def test_invalidate_key(self, cache: DetectionCache) -> None:
        key = cache.key_for(DetectionStrategy.DOMAIN, "acme.test")
        cache.put(key, Tenant(id="acme"))
        assert cache.invalidate(key)
        assert not cache.invalidate(key)

    def test_invalidate_tenant_drops_its_entries_and_misses(self, cache: DetectionCache) -> None:
        acme_domain = cache.key_for(DetectionStrategy.DOMAIN, "acme.test")
        acme_header = cache.key_for(DetectionStrategy.HEADER, "acme")
        globex = cache.key_for(DetectionStrategy.DOMAIN, "globex.test")
        miss = cache.key_for(DetectionStrategy.DOMAIN, "new.test")
        cache.put(acme_domain, Tenant(id="acme"))
        cache.put(acme_header, Tenant(id="acme"))
        cache.put(globex, Tenant(id="globex"))
        cache.put(miss, NOT_FOUND)

        assert cache.invalidate_tenant("acme") == 3
        assert cache.get(globex) is not None
        assert cache.get(acme_domain) is None
        assert cache.get(miss) is None

    def test_invalidate_tenant_matches_integer_ids(self, cache: DetectionCache) -> None:
        key = cache.key_for(DetectionStrategy.HEADER, "7")
        cache.put(key, Tenant(id=7))
        assert cache.invalidate_tenant("7") == 1

    def test_clear(self, cache: DetectionCache) -> None:
        cache.put(cache.key_for(DetectionStrategy.DOMAIN, "a"), NOT_FOUND)
        cache.clear()
        assert len(cache) == 0
