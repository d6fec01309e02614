"""
tenancy - Multi-tenancy runtime for async Python services.

This library provides:
- Tenant detection from request host, headers or path, with lookup caching
- A per-unit-of-work tenant context with transactional switching
- Database, cache and storage isolation strategies
- Scoped "run as tenant" and "run as landlord" execution
- Tenant lifecycle orchestration with best-effort provisioning
- A tenant-scoped SQLAlchemy query filter and ASGI middleware
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tenancy-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from tenancy.bus import EventBus, InMemoryEventBus
from tenancy.config import (
    CacheConfig,
    CacheStrategyName,
    DatabaseConfig,
    DatabaseStrategyName,
    DebugConfig,
    DetectionConfig,
    DetectionStrategy,
    MissingTenantPolicy,
    StorageConfig,
    StorageStrategyName,
    TenancyConfig,
)
from tenancy.context import (
    ContextState,
    get_current_tenant,
    get_previous_tenant,
    get_required_tenant,
    is_tenant_context,
    tenant_config,
)
from tenancy.detection import (
    DetectionCache,
    DetectorChain,
    DomainDetector,
    HeaderDetector,
    PathDetector,
    SubdomainDetector,
    TenantDetector,
    build_detector_chain,
)
from tenancy.events import (
    TenancyEvent,
    TenantActivated,
    TenantCreated,
    TenantDeactivated,
    TenantDeleted,
    TenantUpdated,
)
from tenancy.exceptions import (
    ConfigurationError,
    ProvisioningError,
    RestorationError,
    StrategyError,
    TenancyError,
    TenantAlreadyExistsError,
    TenantNotFoundError,
    TenantSwitchError,
)
from tenancy.filtering import (
    TenantScopedMixin,
    belongs_to_current_tenant,
    for_tenant,
    install_tenant_filter,
    uninstall_tenant_filter,
    without_tenant_scope,
)
from tenancy.manager import TenancyManager
from tenancy.middleware import RequireTenantMiddleware, TenancyMiddleware, requires_tenant
from tenancy.requests import RequestDescriptor
from tenancy.strategies import (
    CacheBackend,
    InMemoryCacheBackend,
    IsolationStrategies,
    PrefixedCacheStrategy,
    RedisCacheBackend,
    SeparateCacheStrategy,
    SeparateDatabaseStrategy,
    SeparateDiskStrategy,
    SharedCacheStrategy,
    SharedStorageStrategy,
    SingleDatabaseStrategy,
    TenantCache,
    TenantPathStorageStrategy,
    TenantStorage,
    build_strategies,
)
from tenancy.tenants import (
    InMemoryTenantRepository,
    ProvisioningReport,
    SQLAlchemyTenantRepository,
    Tenant,
    TenantCreationResult,
    TenantRepository,
)
from tenancy.tenants.lifecycle import TenantLifecycle
from tenancy.validation import (
    check_system_requirements,
    validate_configuration,
    validate_tenant_database,
    validate_tenant_integrity,
)

__all__ = [
    "__version__",
    # Configuration
    "TenancyConfig",
    "DetectionConfig",
    "DatabaseConfig",
    "CacheConfig",
    "StorageConfig",
    "DebugConfig",
    "DetectionStrategy",
    "DatabaseStrategyName",
    "CacheStrategyName",
    "StorageStrategyName",
    "MissingTenantPolicy",
    # Exceptions
    "TenancyError",
    "TenantNotFoundError",
    "TenantAlreadyExistsError",
    "ConfigurationError",
    "StrategyError",
    "TenantSwitchError",
    "RestorationError",
    "ProvisioningError",
    # Context
    "ContextState",
    "get_current_tenant",
    "get_previous_tenant",
    "get_required_tenant",
    "is_tenant_context",
    "tenant_config",
    # Tenants
    "Tenant",
    "TenantCreationResult",
    "ProvisioningReport",
    "TenantRepository",
    "InMemoryTenantRepository",
    "SQLAlchemyTenantRepository",
    "TenantLifecycle",
    # Detection
    "RequestDescriptor",
    "TenantDetector",
    "DomainDetector",
    "SubdomainDetector",
    "HeaderDetector",
    "PathDetector",
    "DetectorChain",
    "DetectionCache",
    "build_detector_chain",
    # Strategies
    "IsolationStrategies",
    "build_strategies",
    "SeparateDatabaseStrategy",
    "SingleDatabaseStrategy",
    "PrefixedCacheStrategy",
    "SeparateCacheStrategy",
    "SharedCacheStrategy",
    "CacheBackend",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "TenantCache",
    "TenantPathStorageStrategy",
    "SeparateDiskStrategy",
    "SharedStorageStrategy",
    "TenantStorage",
    # Manager
    "TenancyManager",
    # Notifications
    "EventBus",
    "InMemoryEventBus",
    "TenancyEvent",
    "TenantActivated",
    "TenantDeactivated",
    "TenantCreated",
    "TenantUpdated",
    "TenantDeleted",
    # Integrations
    "TenantScopedMixin",
    "install_tenant_filter",
    "uninstall_tenant_filter",
    "without_tenant_scope",
    "for_tenant",
    "belongs_to_current_tenant",
    "TenancyMiddleware",
    "RequireTenantMiddleware",
    "requires_tenant",
    # Validation
    "validate_configuration",
    "validate_tenant_database",
    "validate_tenant_integrity",
    "check_system_requirements",
]
