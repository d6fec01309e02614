"""
Shared pytest fixtures for the tenancy library tests.

This module provides:
- Sample tenants (acme, globex) and a populated repository
- A configuration rooted in pytest's tmp_path
- Isolation strategies (real SQLite database strategy, flaky cache and
  storage strategies for failure injection)
- A TenancyManager wired to all of the above with a MockTracer

The tenant context is reset to landlord around every test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio

from tenancy.bus import InMemoryEventBus
from tenancy.config import (
    DatabaseConfig,
    DetectionConfig,
    DetectionStrategy,
    StorageConfig,
    TenancyConfig,
)
from tenancy.context import clear_tenant_context
from tenancy.manager import TenancyManager
from tenancy.observability import MockTracer
from tenancy.strategies import (
    InMemoryCacheBackend,
    IsolationStrategies,
    SeparateDatabaseStrategy,
)
from tenancy.tenants.model import Tenant
from tests.fixtures import (
    CountingRepository,
    FlakyCacheStrategy,
    FlakyStorageStrategy,
    make_tenant,
)

# ============================================================================
# Context Reset
# ============================================================================


@pytest.fixture(autouse=True)
def landlord_context() -> Iterator[None]:
    """Every test starts and ends as landlord."""
    clear_tenant_context()
    yield
    clear_tenant_context()


# ============================================================================
# Tenants
# ============================================================================


@pytest.fixture
def acme() -> Tenant:
    return make_tenant("acme", subdomain="acme", config={"billing": {"plan": "pro"}})


@pytest.fixture
def globex() -> Tenant:
    return make_tenant("globex", subdomain="globex")


@pytest.fixture
def repository(acme: Tenant, globex: Tenant) -> CountingRepository:
    """Repository holding acme and globex."""
    return CountingRepository([acme, globex])


# ============================================================================
# Configuration and strategies
# ============================================================================


@pytest.fixture
def config(tmp_path: Path) -> TenancyConfig:
    """
    Configuration with every resource under tmp_path.

    Detection is domain first, then subdomain, header and path.
    """
    return TenancyConfig(
        detection=DetectionConfig(
            strategy=DetectionStrategy.DOMAIN,
            detectors=(
                DetectionStrategy.SUBDOMAIN,
                DetectionStrategy.HEADER,
                DetectionStrategy.PATH,
            ),
        ),
        database=DatabaseConfig(
            landlord_url=f"sqlite+aiosqlite:///{tmp_path / 'landlord.db'}",
            sqlite_directory=str(tmp_path / "databases"),
        ),
        storage=StorageConfig(base_path=str(tmp_path / "storage")),
        enable_tracing=False,
    )


@pytest_asyncio.fixture
async def database_strategy(config: TenancyConfig) -> AsyncGenerator[SeparateDatabaseStrategy, None]:
    pytest.importorskip("aiosqlite")
    strategy = SeparateDatabaseStrategy(config.database, enable_tracing=False)
    yield strategy
    await strategy.dispose()


@pytest.fixture
def cache_backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


@pytest.fixture
def cache_strategy(config: TenancyConfig, cache_backend: InMemoryCacheBackend) -> FlakyCacheStrategy:
    return FlakyCacheStrategy(cache_backend, config.cache)


@pytest.fixture
def storage_strategy(config: TenancyConfig) -> FlakyStorageStrategy:
    return FlakyStorageStrategy(config.storage)


@pytest.fixture
def strategies(
    database_strategy: SeparateDatabaseStrategy,
    cache_strategy: FlakyCacheStrategy,
    storage_strategy: FlakyStorageStrategy,
) -> IsolationStrategies:
    return IsolationStrategies(
        database=database_strategy,
        cache=cache_strategy,
        storage=storage_strategy,
    )


# ============================================================================
# Manager
# ============================================================================


@pytest.fixture
def tracer() -> MockTracer:
    return MockTracer()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus(enable_tracing=False)


@pytest_asyncio.fixture
async def manager(
    repository: CountingRepository,
    strategies: IsolationStrategies,
    config: TenancyConfig,
    bus: InMemoryEventBus,
    tracer: MockTracer,
) -> AsyncGenerator[TenancyManager, None]:
    """TenancyManager over the shared fixtures."""
    tenancy = TenancyManager(
        repository,
        strategies,
        config=config,
        bus=bus,
        tracer=tracer,
    )
    yield tenancy
    await tenancy.close()
