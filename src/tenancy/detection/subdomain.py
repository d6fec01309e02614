"""Detection by the first host label."""

from __future__ import annotations

from tenancy.config import DetectionStrategy
from tenancy.detection.interface import TenantDetector
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant


class SubdomainDetector(TenantDetector):
    """
    Resolve the tenant whose ``subdomain`` equals the first host label.

    The detector only applies when the host has at least two labels and
    the first one is not in ``excluded_subdomains`` (www, api, admin, ...).
    So ``www.example.com`` is declined while ``acme.example.com`` is
    looked up as ``acme``.
    """

    strategy = DetectionStrategy.SUBDOMAIN
    default_priority = 10

    def extract_identifier(self, request: RequestDescriptor) -> str | None:
        labels = request.host.strip().split(".")
        if len(labels) < 2 or not labels[0]:
            return None
        label = self._fold(labels[0])
        excluded = {self._fold(name) for name in self._config.excluded_subdomains}
        if label in excluded:
            return None
        return label

    async def lookup(self, identifier: str) -> Tenant | None:
        return await self._repository.find_by_subdomain(
            identifier,
            case_sensitive=self._config.case_sensitive,
        )


__all__ = ["SubdomainDetector"]
