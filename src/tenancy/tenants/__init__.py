"""
Tenant records and directory implementations.

TenantLifecycle is imported from tenancy.tenants.lifecycle (it depends on
tenancy.strategies).
"""

from tenancy.tenants.model import (
    ProvisioningReport,
    ProvisioningStep,
    Tenant,
    TenantCreationResult,
)
from tenancy.tenants.repository import (
    InMemoryTenantRepository,
    TenantRepository,
    generate_tenant_id,
)
from tenancy.tenants.sqlalchemy import SQLAlchemyTenantRepository, tenants_table

__all__ = [
    "Tenant",
    "ProvisioningStep",
    "ProvisioningReport",
    "TenantCreationResult",
    "TenantRepository",
    "InMemoryTenantRepository",
    "SQLAlchemyTenantRepository",
    "tenants_table",
    "generate_tenant_id",
]
