"""Detection by full host name."""

from __future__ import annotations

from tenancy.config import DetectionStrategy
from tenancy.detection.interface import TenantDetector
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant


class DomainDetector(TenantDetector):
    """
    Resolve the tenant whose ``domain`` equals the request host.

    Example:
        >>> detector = DomainDetector(repository)
        >>> await detector.detect(RequestDescriptor(host="acme.test"))
        Tenant(acme)
    """

    strategy = DetectionStrategy.DOMAIN
    default_priority = 20

    def extract_identifier(self, request: RequestDescriptor) -> str | None:
        host = request.host.strip()
        if not host:
            return None
        return self._fold(host)

    async def lookup(self, identifier: str) -> Tenant | None:
        return await self._repository.find_by_domain(
            identifier,
            case_sensitive=self._config.case_sensitive,
        )


__all__ = ["DomainDetector"]
