"""
Configuration classes for tenancy.

This module provides:
- Strategy enums: DetectionStrategy, DatabaseStrategyName, CacheStrategyName,
  StorageStrategyName and MissingTenantPolicy
- Section configs: DetectionConfig, DatabaseConfig, CacheConfig,
  StorageConfig, DebugConfig
- TenancyConfig: the top-level configuration with mapping/env loaders
- Settings models (pydantic-settings): TenancySettings, DetectionSettings,
  DatabaseSettings, CacheSettings, StorageSettings, DebugSettings

All configuration objects are frozen dataclasses, validated on creation.
The settings models coerce raw values (environment variables or mapping
entries) before the dataclasses are built.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from tenancy.exceptions import ConfigurationError

E = TypeVar("E", bound=Enum)


class DetectionStrategy(Enum):
    """Where the tenant identifier is extracted from on a request."""

    DOMAIN = "domain"
    SUBDOMAIN = "subdomain"
    HEADER = "header"
    PATH = "path"


class DatabaseStrategyName(Enum):
    """
    Database isolation strategy.

    Attributes:
        SEPARATE: One database per tenant
        SINGLE: Shared database, rows isolated by a tenant column
    """

    SEPARATE = "separate"
    SINGLE = "single"


class CacheStrategyName(Enum):
    """
    Cache isolation strategy.

    Attributes:
        PREFIXED: Shared store, per-tenant key prefix
        SEPARATE: Dedicated store per tenant
        SHARED: No isolation
    """

    PREFIXED = "prefixed"
    SEPARATE = "separate"
    SHARED = "shared"


class StorageStrategyName(Enum):
    """
    Storage isolation strategy.

    Attributes:
        TENANT_PATH: Tenant directory under a shared base path
        SEPARATE_DISK: Dedicated disk root per tenant
        SHARED: No isolation
    """

    TENANT_PATH = "tenant_path"
    SEPARATE_DISK = "separate_disk"
    SHARED = "shared"


class MissingTenantPolicy(Enum):
    """
    What tenant-scoped queries do when no tenant is bound.

    Attributes:
        EMPTY: Queries return no rows
        RAISE: Queries raise TenantNotFoundError
    """

    EMPTY = "empty"
    RAISE = "raise"


DEFAULT_EXCLUDED_SUBDOMAINS = frozenset({"www", "mail", "ftp", "admin", "api", "cdn", "static"})
DEFAULT_TENANT_DIRECTORIES = ("public", "private", "uploads", "exports", "imports", "temp")


@dataclass(frozen=True)
class DetectionConfig:
    """
    Configuration for tenant detection.

    Attributes:
        strategy: Primary detection strategy
        detectors: Additional strategies chained after the primary one
        cache_lookup: Cache detection results
        cache_ttl: Seconds a cached detection result stays valid
        cache_key: Prefix for detection cache keys
        excluded_subdomains: First labels never treated as a tenant subdomain
        header: Header carrying the tenant id for header detection
        path_segment: 0-based path segment carrying the tenant id
        fallback_tenant: Tenant id used when detection finds nothing
        case_sensitive: Match domains/subdomains case-sensitively
    """

    strategy: DetectionStrategy = DetectionStrategy.DOMAIN
    detectors: tuple[DetectionStrategy, ...] = ()
    cache_lookup: bool = True
    cache_ttl: float = 3600.0
    cache_key: str = "tenant_lookup"
    excluded_subdomains: frozenset[str] = DEFAULT_EXCLUDED_SUBDOMAINS
    header: str = "X-Tenant-ID"
    path_segment: int = 0
    fallback_tenant: str | None = None
    case_sensitive: bool = False

    def __post_init__(self) -> None:
        if self.cache_ttl <= 0:
            raise ConfigurationError("detection.cache_ttl must be positive")
        if self.path_segment < 0:
            raise ConfigurationError("detection.path_segment must be >= 0")
        if not self.header:
            raise ConfigurationError("detection.header must not be empty")

    @property
    def strategies(self) -> tuple[DetectionStrategy, ...]:
        """Primary strategy followed by the extra ones, without duplicates."""
        ordered = [self.strategy]
        for strategy in self.detectors:
            if strategy not in ordered:
                ordered.append(strategy)
        return tuple(ordered)


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Configuration for database isolation.

    Attributes:
        strategy: separate or single
        landlord_url: SQLAlchemy URL of the landlord (platform) database
        tenant_database_prefix: Prefix for generated tenant database names
        allowed_override_keys: Connection parameters a tenant's own
            config["database"] may override. Empty means none.
        sqlite_directory: Where tenant SQLite files live (defaults to the
            landlord file's directory)
        auto_create_database: Create the tenant database on tenant creation
        auto_migrate: Migrate the tenant database on tenant creation
        auto_seed: Seed the tenant database after migrating
        tenant_column: Tenant column for the single database strategy
        pool_size: Pool size for tenant engines (None uses driver default)
        connection_timeout: Seconds to wait when connecting
    """

    strategy: DatabaseStrategyName = DatabaseStrategyName.SEPARATE
    landlord_url: str = "sqlite+aiosqlite:///landlord.db"
    tenant_database_prefix: str = "tenant_"
    allowed_override_keys: frozenset[str] = frozenset()
    sqlite_directory: str | None = None
    auto_create_database: bool = True
    auto_migrate: bool = False
    auto_seed: bool = False
    tenant_column: str = "tenant_id"
    pool_size: int | None = None
    connection_timeout: float = 60.0

    def __post_init__(self) -> None:
        if not self.landlord_url:
            raise ConfigurationError("database.landlord_url must not be empty")
        if self.auto_seed and not self.auto_migrate:
            raise ConfigurationError("database.auto_seed requires database.auto_migrate")
        if self.pool_size is not None and self.pool_size < 1:
            raise ConfigurationError("database.pool_size must be >= 1")


@dataclass(frozen=True)
class CacheConfig:
    """
    Configuration for cache isolation.

    Attributes:
        strategy: prefixed, separate or shared
        tenant_prefix: Base of the per-tenant key prefix
        clear_on_tenant_switch: Flush the tenant namespace when applying it
        redis_url: Use a Redis backend at this URL instead of in-memory
        default_ttl: Default expiry in seconds for cached values (None = never)
    """

    strategy: CacheStrategyName = CacheStrategyName.PREFIXED
    tenant_prefix: str = "tenant"
    clear_on_tenant_switch: bool = False
    redis_url: str | None = None
    default_ttl: float | None = None

    def __post_init__(self) -> None:
        if not self.tenant_prefix:
            raise ConfigurationError("cache.tenant_prefix must not be empty")


@dataclass(frozen=True)
class StorageConfig:
    """
    Configuration for storage isolation.

    Attributes:
        strategy: tenant_path, separate_disk or shared
        base_path: Root of the shared storage area
        tenant_path: Directory under base_path holding tenant roots
        path_pattern: Per-tenant directory name, formatted with tenant_id
        disks_root: Parent of per-tenant disks for separate_disk
        tenant_directories: Subdirectories provisioned for every tenant
        auto_create_directories: Provision directories on tenant creation
    """

    strategy: StorageStrategyName = StorageStrategyName.TENANT_PATH
    base_path: str = "storage"
    tenant_path: str = "tenants"
    path_pattern: str = "{tenant_id}"
    disks_root: str | None = None
    tenant_directories: tuple[str, ...] = DEFAULT_TENANT_DIRECTORIES
    auto_create_directories: bool = True

    def __post_init__(self) -> None:
        if "{tenant_id}" not in self.path_pattern:
            raise ConfigurationError("storage.path_pattern must contain '{tenant_id}'")
        for directory in self.tenant_directories:
            if not directory or Path(directory).is_absolute() or ".." in Path(directory).parts:
                raise ConfigurationError(f"Invalid tenant directory: {directory!r}")


@dataclass(frozen=True)
class DebugConfig:
    """Diagnostic switches."""

    log_tenant_switches: bool = False
    log_detection: bool = False


@dataclass(frozen=True)
class TenancyConfig:
    """
    Top-level tenancy configuration.

    Example:
        >>> config = TenancyConfig.from_mapping({
        ...     "detection": {"strategy": "subdomain"},
        ...     "cache": {"strategy": "prefixed", "tenant_prefix": "acme"},
        ... })
        >>> config.detection.strategy
        <DetectionStrategy.SUBDOMAIN: 'subdomain'>
    """

    detection: DetectionConfig = field(default_factory=DetectionConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)
    enable_tracing: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TenancyConfig:
        """
        Build configuration from a nested mapping.

        Keys mirror the dataclass fields. Values are validated by the
        section settings models, so strings such as "false" or "60" are
        coerced the same way environment variables are. Unknown sections
        or keys raise ConfigurationError.
        """
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key == "enable_tracing":
                settings = _validate(TenancySettings, {key: value}, "enable_tracing")
                if settings.enable_tracing is not None:
                    kwargs[key] = settings.enable_tracing
            elif key in _SECTIONS:
                kwargs[key] = _build_section(key, value)
            else:
                raise ConfigurationError(f"Unknown configuration section: {key}")
        return cls(**kwargs)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> TenancyConfig:
        """
        Build configuration from TENANCY_* environment variables.

        Each section reads its own prefix, for example
        TENANCY_DETECTION_STRATEGY or TENANCY_DATABASE_AUTO_MIGRATE.
        Collection settings take JSON lists. Only variables that are
        present override the defaults; empty values are ignored.

        Args:
            env_file: Optional dotenv file read in addition to the process
                environment (process variables win)
        """
        data: dict[str, Any] = {}
        for section, (settings_cls, _) in _SECTIONS.items():
            settings = _load(settings_cls, env_file)
            data[section] = settings.model_dump(exclude_none=True)
        tracing = _load(TenancySettings, env_file).enable_tracing
        if tracing is not None:
            data["enable_tracing"] = tracing
        return cls.from_mapping(data)

    def with_overrides(self, **sections: Any) -> TenancyConfig:
        """Return a copy with whole sections replaced."""
        return replace(self, **sections)


class _PartialSettings(BaseSettings):
    # Fields default to None so only values actually supplied are dumped
    model_config = SettingsConfigDict(env_ignore_empty=True, extra="ignore")


class TenancySettings(_PartialSettings):
    """
    Top-level switches.

    Environment variables:
        TENANCY_ENABLE_TRACING: Emit OpenTelemetry spans (default: true)
    """

    model_config = SettingsConfigDict(env_prefix="TENANCY_")

    enable_tracing: bool | None = None


class DetectionSettings(_PartialSettings):
    """
    Environment loader for DetectionConfig.

    Environment variables use the TENANCY_DETECTION_ prefix, e.g.
    TENANCY_DETECTION_STRATEGY=header or
    TENANCY_DETECTION_EXCLUDED_SUBDOMAINS='["www", "status"]'.
    """

    model_config = SettingsConfigDict(env_prefix="TENANCY_DETECTION_")

    strategy: DetectionStrategy | None = None
    detectors: tuple[DetectionStrategy, ...] | None = None
    cache_lookup: bool | None = None
    cache_ttl: float | None = None
    cache_key: str | None = None
    excluded_subdomains: frozenset[str] | None = None
    header: str | None = None
    path_segment: int | None = None
    fallback_tenant: str | None = None
    case_sensitive: bool | None = None


class DatabaseSettings(_PartialSettings):
    """Environment loader for DatabaseConfig (TENANCY_DATABASE_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="TENANCY_DATABASE_")

    strategy: DatabaseStrategyName | None = None
    landlord_url: str | None = None
    tenant_database_prefix: str | None = None
    allowed_override_keys: frozenset[str] | None = None
    sqlite_directory: str | None = None
    auto_create_database: bool | None = None
    auto_migrate: bool | None = None
    auto_seed: bool | None = None
    tenant_column: str | None = None
    pool_size: int | None = None
    connection_timeout: float | None = None


class CacheSettings(_PartialSettings):
    """Environment loader for CacheConfig (TENANCY_CACHE_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="TENANCY_CACHE_")

    strategy: CacheStrategyName | None = None
    tenant_prefix: str | None = None
    clear_on_tenant_switch: bool | None = None
    redis_url: str | None = None
    default_ttl: float | None = None


class StorageSettings(_PartialSettings):
    """Environment loader for StorageConfig (TENANCY_STORAGE_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="TENANCY_STORAGE_")

    strategy: StorageStrategyName | None = None
    base_path: str | None = None
    tenant_path: str | None = None
    path_pattern: str | None = None
    disks_root: str | None = None
    tenant_directories: tuple[str, ...] | None = None
    auto_create_directories: bool | None = None


class DebugSettings(_PartialSettings):
    """Environment loader for DebugConfig (TENANCY_DEBUG_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="TENANCY_DEBUG_")

    log_tenant_switches: bool | None = None
    log_detection: bool | None = None


_SECTIONS: dict[str, tuple[type[_PartialSettings], type[Any]]] = {
    "detection": (DetectionSettings, DetectionConfig),
    "database": (DatabaseSettings, DatabaseConfig),
    "cache": (CacheSettings, CacheConfig),
    "storage": (StorageSettings, StorageConfig),
    "debug": (DebugSettings, DebugConfig),
}

S = TypeVar("S", bound=_PartialSettings)


def _load(settings_cls: type[S], env_file: str | Path | None) -> S:
    try:
        return settings_cls(_env_file=env_file)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid TENANCY_* environment: {e}") from e


def _validate(settings_cls: type[S], values: Mapping[str, Any], section: str) -> S:
    # model_validate skips the environment sources
    try:
        return settings_cls.model_validate(dict(values))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {section} settings: {e}") from e


def _parse_enum(enum_cls: type[E], value: Any, name: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"Invalid {name} '{value}'. Must be one of: {allowed}"
        ) from None


def _build_section(section: str, values: Any) -> Any:
    settings_cls, config_cls = _SECTIONS[section]
    if isinstance(values, config_cls):
        return values
    if not isinstance(values, Mapping):
        raise ConfigurationError(f"Configuration section '{section}' must be a mapping")

    for key in values:
        if key not in settings_cls.model_fields:
            raise ConfigurationError(f"Unknown setting: {section}.{key}")

    prepared = dict(values)
    if "strategy" in prepared:
        prepared["strategy"] = _parse_enum(
            _STRATEGY_ENUMS[section], prepared["strategy"], f"{section} strategy"
        )
    if section == "detection" and prepared.get("detectors") is not None:
        prepared["detectors"] = tuple(
            _parse_enum(DetectionStrategy, v, "detection strategy") for v in prepared["detectors"]
        )
    settings = _validate(settings_cls, prepared, section)
    return config_cls(**settings.model_dump(exclude_none=True))


_STRATEGY_ENUMS: dict[str, type[Enum]] = {
    "detection": DetectionStrategy,
    "database": DatabaseStrategyName,
    "cache": CacheStrategyName,
    "storage": StorageStrategyName,
}


__all__ = [
    "DetectionStrategy",
    "DatabaseStrategyName",
    "CacheStrategyName",
    "StorageStrategyName",
    "MissingTenantPolicy",
    "DetectionConfig",
    "DatabaseConfig",
    "CacheConfig",
    "StorageConfig",
    "DebugConfig",
    "TenancyConfig",
    "TenancySettings",
    "DetectionSettings",
    "DatabaseSettings",
    "CacheSettings",
    "StorageSettings",
    "DebugSettings",
    "DEFAULT_EXCLUDED_SUBDOMAINS",
    "DEFAULT_TENANT_DIRECTORIES",
]
