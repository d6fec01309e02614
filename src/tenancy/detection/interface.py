"""
Tenant detector contract.

A detector extracts an identifier from a RequestDescriptor and looks the
matching tenant up in the directory. Detectors hold a reference to the
repository, never mutate tenant context, and never raise for requests
they cannot handle: can_detect() returns False instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from tenancy.config import DetectionConfig, DetectionStrategy
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant
from tenancy.tenants.repository import TenantRepository


class TenantDetector(ABC):
    """
    Base class for detectors.

    Subclasses set ``strategy`` and ``default_priority`` and implement
    extract_identifier() and lookup().

    Args:
        repository: Tenant directory to look identifiers up in
        config: Detection settings (header name, exclusions, case handling)
        priority: Override the class default priority (lower runs first)
    """

    strategy: ClassVar[DetectionStrategy]
    default_priority: ClassVar[int] = 100

    def __init__(
        self,
        repository: TenantRepository,
        config: DetectionConfig | None = None,
        *,
        priority: int | None = None,
    ) -> None:
        self._repository = repository
        self._config = config or DetectionConfig()
        self._priority = self.default_priority if priority is None else priority

    @property
    def config(self) -> DetectionConfig:
        return self._config

    def priority(self) -> int:
        """Position in the chain; lower values run first."""
        return self._priority

    def _fold(self, value: str) -> str:
        return value if self._config.case_sensitive else value.lower()

    @abstractmethod
    def extract_identifier(self, request: RequestDescriptor) -> str | None:
        """
        Pull the tenant identifier out of the request.

        Pure: no I/O, no side effects. Returns None when the request does
        not carry an identifier this detector understands.
        """

    def can_detect(self, request: RequestDescriptor) -> bool:
        """True if this detector applies to the request."""
        return self.extract_identifier(request) is not None

    @abstractmethod
    async def lookup(self, identifier: str) -> Tenant | None:
        """Resolve an extracted identifier to an active tenant."""

    async def detect(self, request: RequestDescriptor) -> Tenant | None:
        """Extract the identifier and resolve it, or return None."""
        identifier = self.extract_identifier(request)
        if identifier is None:
            return None
        return await self.lookup(identifier)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(priority={self._priority})"


__all__ = ["TenantDetector"]
