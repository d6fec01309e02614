"""Detection by request header (X-Tenant-ID by default)."""

from __future__ import annotations

from tenancy.config import DetectionStrategy
from tenancy.detection.interface import TenantDetector
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant


class HeaderDetector(TenantDetector):
    """Resolve an active tenant by the id carried in the configured header."""

    strategy = DetectionStrategy.HEADER
    default_priority = 30

    def extract_identifier(self, request: RequestDescriptor) -> str | None:
        value = request.header(self._config.header)
        if value is None or not value.strip():
            return None
        return value.strip()

    async def lookup(self, identifier: str) -> Tenant | None:
        return await self._repository.find_active(identifier)


__all__ = ["HeaderDetector"]
