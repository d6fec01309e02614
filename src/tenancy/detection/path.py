"""Detection by path segment, e.g. ``/acme/dashboard``."""

from __future__ import annotations

from tenancy.config import DetectionStrategy
from tenancy.detection.interface import TenantDetector
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant


class PathDetector(TenantDetector):
    """Resolve an active tenant by the id in the configured path segment."""

    strategy = DetectionStrategy.PATH
    default_priority = 40

    def extract_identifier(self, request: RequestDescriptor) -> str | None:
        return request.segment(self._config.path_segment)

    async def lookup(self, identifier: str) -> Tenant | None:
        return await self._repository.find_active(identifier)


__all__ = ["PathDetector"]
