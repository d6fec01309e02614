"""
Detector chain.

Runs detectors in priority order and returns the first tenant found.
Detection never fails the request: a detector or cache error is logged
and treated as a miss for that detector.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from tenancy.config import DetectionConfig, DetectionStrategy
from tenancy.detection.cache import NOT_FOUND, DetectionCache
from tenancy.detection.domain import DomainDetector
from tenancy.detection.header import HeaderDetector
from tenancy.detection.interface import TenantDetector
from tenancy.detection.path import PathDetector
from tenancy.detection.subdomain import SubdomainDetector
from tenancy.requests import RequestDescriptor
from tenancy.tenants.model import Tenant
from tenancy.tenants.repository import TenantRepository

logger = logging.getLogger(__name__)

DETECTORS: dict[DetectionStrategy, type[TenantDetector]] = {
    DetectionStrategy.DOMAIN: DomainDetector,
    DetectionStrategy.SUBDOMAIN: SubdomainDetector,
    DetectionStrategy.HEADER: HeaderDetector,
    DetectionStrategy.PATH: PathDetector,
}


class DetectorChain:
    """
    Ordered collection of detectors.

    Example:
        >>> chain = DetectorChain([DomainDetector(repo), SubdomainDetector(repo)])
        >>> [d.strategy.value for d in chain.detectors]
        ['subdomain', 'domain']
        >>> tenant = await chain.resolve(request, cache)
    """

    def __init__(self, detectors: Iterable[TenantDetector] = ()) -> None:
        self._detectors: list[TenantDetector] = []
        for detector in detectors:
            self.add(detector)

    @property
    def detectors(self) -> list[TenantDetector]:
        """Detectors in execution order."""
        return list(self._detectors)

    def add(self, detector: TenantDetector) -> None:
        """Insert a detector, keeping priority order (stable for ties)."""
        self._detectors.append(detector)
        self._detectors.sort(key=lambda d: d.priority())

    async def resolve(
        self,
        request: RequestDescriptor,
        cache: DetectionCache | None = None,
    ) -> Tenant | None:
        """
        Resolve the tenant for a request.

        For each applicable detector: consult the cache, call the detector
        on a miss, cache the outcome, and stop at the first tenant.

        Args:
            request: Inbound request descriptor
            cache: Optional lookup cache

        Returns:
            The first tenant found, or None
        """
        for detector in self._detectors:
            tenant = await self._run_detector(detector, request, cache)
            if tenant is not None:
                logger.debug(
                    f"Tenant {tenant.id} resolved by {detector.strategy.value} detector",
                    extra={"tenant_id": tenant.id, "detector": detector.strategy.value},
                )
                return tenant
        return None

    async def _run_detector(
        self,
        detector: TenantDetector,
        request: RequestDescriptor,
        cache: DetectionCache | None,
    ) -> Tenant | None:
        name = detector.strategy.value
        try:
            identifier = detector.extract_identifier(request)
        except Exception as e:
            logger.warning(
                f"Detector {name} failed to extract an identifier: {e}",
                extra={"detector": name, "error": str(e)},
            )
            return None
        if identifier is None:
            return None

        key = cache.key_for(detector.strategy, identifier) if cache is not None else None
        if cache is not None and key is not None:
            try:
                cached = cache.get(key)
            except Exception as e:
                logger.warning(
                    f"Detection cache read failed: {e}",
                    extra={"detector": name, "error": str(e)},
                )
                cached = None
            if cached is NOT_FOUND:
                logger.debug(
                    f"Cached miss for {name} detector",
                    extra={"detector": name},
                )
                return None
            if isinstance(cached, Tenant):
                logger.debug(
                    f"Cache hit for {name} detector",
                    extra={"detector": name, "tenant_id": cached.id},
                )
                return cached

        try:
            tenant = await detector.lookup(identifier)
        except Exception as e:
            # Failed lookups are not cached
            logger.warning(
                f"Detector {name} lookup failed: {e}",
                exc_info=True,
                extra={"detector": name, "error": str(e)},
            )
            return None

        if cache is not None and key is not None:
            try:
                cache.put(key, tenant if tenant is not None else NOT_FOUND)
            except Exception as e:
                logger.warning(
                    f"Detection cache write failed: {e}",
                    extra={"detector": name, "error": str(e)},
                )
        return tenant

    def __len__(self) -> int:
        return len(self._detectors)


def build_detector_chain(
    config: DetectionConfig,
    repository: TenantRepository,
) -> DetectorChain:
    """
    Build the chain for a detection configuration.

    The primary strategy builds the first detector; ``config.detectors``
    adds further strategies. Execution order follows priority.
    """
    return DetectorChain(DETECTORS[strategy](repository, config) for strategy in config.strategies)


__all__ = ["DetectorChain", "build_detector_chain", "DETECTORS"]
