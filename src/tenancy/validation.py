"""
Configuration and tenant integrity checks.

Every check returns human-readable findings instead of raising. An empty
list means the check passed. Findings are meant for the ``tenancy
diagnose`` command and for startup warnings; nothing here stops a running
system.
"""

from __future__ import annotations

import logging
import platform
import sys
from collections import Counter
from importlib import metadata
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from tenancy.config import (
    DatabaseStrategyName,
    DetectionStrategy,
    TenancyConfig,
)
from tenancy.exceptions import ProvisioningError
from tenancy.observability import OTEL_AVAILABLE
from tenancy.strategies.backends import REDIS_AVAILABLE
from tenancy.strategies.database import SeparateDatabaseStrategy, SingleDatabaseStrategy
from tenancy.strategies.interface import DatabaseStrategy
from tenancy.tenants.model import Tenant
from tenancy.tenants.repository import TenantRepository

logger = logging.getLogger(__name__)

REQUIRED_PYTHON = (3, 11)

REQUIRED_LIBRARIES = ("pydantic", "pydantic-settings", "sqlalchemy")

OPTIONAL_LIBRARIES = {
    "aiosqlite": "sqlite",
    "asyncpg": "postgresql",
    "redis": "redis",
    "opentelemetry-api": "telemetry",
}

_DATABASE_STRATEGY_CLASSES: dict[DatabaseStrategyName, type[DatabaseStrategy]] = {
    DatabaseStrategyName.SEPARATE: SeparateDatabaseStrategy,
    DatabaseStrategyName.SINGLE: SingleDatabaseStrategy,
}


def validate_configuration(
    config: TenancyConfig,
    *,
    database_strategy: DatabaseStrategy | None = None,
) -> list[str]:
    """
    Check a configuration for settings that cannot work at runtime.

    Args:
        config: Configuration to check
        database_strategy: The database strategy actually in use, checked
            against the configured name

    Returns:
        List of findings (empty when valid)
    """
    errors: list[str] = []
    db = config.database

    try:
        url = make_url(db.landlord_url)
    except ArgumentError as e:
        errors.append(f"Landlord database URL is invalid: {e}")
        url = None

    if url is not None and db.strategy is DatabaseStrategyName.SEPARATE:
        if url.get_backend_name() == "sqlite" and db.sqlite_directory:
            directory = Path(db.sqlite_directory)
            if not directory.is_dir():
                errors.append(f"SQLite directory '{directory}' does not exist.")

    if database_strategy is not None:
        expected = _DATABASE_STRATEGY_CLASSES[db.strategy]
        if not isinstance(database_strategy, expected):
            errors.append(
                f"Database strategy is configured as '{db.strategy.value}' "
                f"but {database_strategy.name} is in use."
            )

    detection = config.detection
    if DetectionStrategy.HEADER in detection.strategies and not detection.header.strip():
        errors.append("Header detection is enabled but no header name is configured.")

    if config.cache.redis_url and not REDIS_AVAILABLE:
        errors.append(
            "A Redis URL is configured but the redis package is not installed "
            "(pip install tenancy-py[redis])."
        )

    storage_base = Path(config.storage.base_path)
    if storage_base.exists() and not storage_base.is_dir():
        errors.append(f"Storage base path '{storage_base}' is not a directory.")

    if errors:
        logger.debug(
            f"Configuration check found {len(errors)} issue(s)",
            extra={"finding_count": len(errors)},
        )
    return errors


async def validate_tenant_database(tenant: Tenant, database_strategy: DatabaseStrategy) -> list[str]:
    """Check that a tenant's database exists (separate-database strategy only)."""
    if isinstance(database_strategy, SingleDatabaseStrategy):
        return []

    name = database_strategy.database_name(tenant)
    try:
        found = await database_strategy.exists(tenant, raise_errors=True)
    except ProvisioningError as e:
        return [f"Cannot check tenant database '{name}': {e}"]
    if not found:
        return [f"Tenant database '{name}' does not exist."]
    return []


async def validate_tenant_integrity(
    repository: TenantRepository,
    config: TenancyConfig,
    database_strategy: DatabaseStrategy | None = None,
) -> list[str]:
    """
    Check every non-deleted tenant record against the configuration.

    Reports tenants missing a name, tenants missing the domain/subdomain
    the primary detection strategy needs, domains claimed by more than one
    tenant, and (when a database strategy is given) missing tenant
    databases.
    """
    errors: list[str] = []
    try:
        tenants = await repository.list_all()
    except Exception as e:
        logger.warning(f"Tenant listing failed during integrity check: {e}", exc_info=True)
        return [f"Cannot validate tenant integrity: {e}"]

    detection = config.detection.strategy
    for tenant in tenants:
        if not tenant.name.strip():
            errors.append(f"Tenant {tenant.id} is missing a name.")
        if detection is DetectionStrategy.DOMAIN and not tenant.domain:
            errors.append(f"Tenant {tenant.id} is missing domain for domain-based detection.")
        if detection is DetectionStrategy.SUBDOMAIN and not tenant.subdomain:
            errors.append(
                f"Tenant {tenant.id} is missing subdomain for subdomain-based detection."
            )
        if database_strategy is not None:
            errors.extend(await validate_tenant_database(tenant, database_strategy))

    domains = Counter(t.domain.lower() for t in tenants if t.domain)
    for domain, count in sorted(domains.items()):
        if count > 1:
            errors.append(f"Domain '{domain}' is claimed by {count} tenants.")

    return errors


def _installed_version(distribution: str) -> str | None:
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        return None


def check_system_requirements() -> dict[str, Any]:
    """
    Report the interpreter, required libraries and optional extras.

    Returns:
        Mapping with ``python_version``, ``libraries`` and ``extras``
        entries; each item has a boolean ``status``.
    """
    current = platform.python_version()
    libraries = {
        name: {"current": _installed_version(name), "status": _installed_version(name) is not None}
        for name in REQUIRED_LIBRARIES
    }
    extras = {
        name: {
            "extra": extra,
            "current": _installed_version(name),
            "status": _installed_version(name) is not None,
        }
        for name, extra in OPTIONAL_LIBRARIES.items()
    }
    extras["opentelemetry-api"]["status"] = OTEL_AVAILABLE
    return {
        "python_version": {
            "required": ".".join(str(part) for part in REQUIRED_PYTHON),
            "current": current,
            "status": sys.version_info[:2] >= REQUIRED_PYTHON,
        },
        "libraries": libraries,
        "extras": extras,
    }


__all__ = [
    "validate_configuration",
    "validate_tenant_database",
    "validate_tenant_integrity",
    "check_system_requirements",
]
