"""
Tenant detection.

Detectors map an inbound RequestDescriptor to a tenant. They are chained
by priority (subdomain 10, domain 20, header 30, path 40) and their
lookups are cached by DetectionCache.
"""

from tenancy.detection.cache import NOT_FOUND, DetectionCache
from tenancy.detection.chain import DETECTORS, DetectorChain, build_detector_chain
from tenancy.detection.domain import DomainDetector
from tenancy.detection.header import HeaderDetector
from tenancy.detection.interface import TenantDetector
from tenancy.detection.path import PathDetector
from tenancy.detection.subdomain import SubdomainDetector

__all__ = [
    "TenantDetector",
    "DomainDetector",
    "SubdomainDetector",
    "HeaderDetector",
    "PathDetector",
    "DetectorChain",
    "build_detector_chain",
    "DETECTORS",
    "DetectionCache",
    "NOT_FOUND",
]
