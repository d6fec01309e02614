"""
Shared test fixtures for the tenancy library.

Usage:
    from tests.fixtures import (
        CountingRepository,
        FlakyCacheStrategy,
        FlakyStorageStrategy,
        make_tenant,
    )
"""

from tests.fixtures.tenants import (
    CountingRepository,
    FlakyCacheStrategy,
    FlakyStorageStrategy,
    make_tenant,
)

__all__ = [
    "CountingRepository",
    "FlakyCacheStrategy",
    "FlakyStorageStrategy",
    "make_tenant",
]
