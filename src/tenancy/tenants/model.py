"""
Tenant record and provisioning result types.

Tenants are immutable snapshots: the manager always sees a consistent set
of fields during a context switch, and updates produce a new instance.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_MISSING = object()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Tenant(BaseModel):
    """
    A customer organisation served from the shared deployment.

    Attributes:
        id: Immutable tenant identifier (string or integer)
        name: Display name
        domain: Full host name the tenant is served on (unique when set)
        subdomain: First host label identifying the tenant (unique when set)
        database: Explicit database name; derived from the id when absent
        config: Ordered per-tenant configuration mapping
        is_active: Inactive tenants are never resolved by detectors
        created_at: Creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        deleted_at: Soft-delete timestamp, None while the tenant is live

    Example:
        >>> tenant = Tenant(id="acme", name="Acme", config={"billing": {"plan": "pro"}})
        >>> tenant.get_config("billing.plan")
        'pro'
        >>> tenant.with_config("billing.seats", 10).get_config("billing")
        {'plan': 'pro', 'seats': 10}
    """

    model_config = ConfigDict(frozen=True)

    id: str | int
    name: str = ""
    domain: str | None = None
    subdomain: str | None = None
    database: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deleted_at: datetime | None = None

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str | int) -> str | int:
        if isinstance(value, str) and not value.strip():
            raise ValueError("tenant id must not be blank")
        return value

    @field_validator("domain", "subdomain", "database")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def tenant_id(self) -> str | int:
        """The tenant identifier."""
        return self.id

    @property
    def is_deleted(self) -> bool:
        """True once the tenant has been soft-deleted."""
        return self.deleted_at is not None

    def get_config(self, key: str | None = None, default: Any = None) -> Any:
        """
        Look up a configuration value by dotted path.

        Args:
            key: Dotted path such as "billing.plan"; None returns a copy of
                the whole mapping
            default: Returned when any segment of the path is missing

        Returns:
            The configured value, or default
        """
        if key is None:
            return copy.deepcopy(self.config)
        node: Any = self.config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return copy.deepcopy(node)

    def has_config(self, key: str) -> bool:
        """Return True if the dotted path exists in the tenant config."""
        return self.get_config(key, _MISSING) is not _MISSING

    def with_config(self, key: str, value: Any) -> Tenant:
        """
        Return a new Tenant with the dotted key set to value.

        Intermediate mappings are created as needed; a non-mapping value
        on the path is replaced.
        """
        config = copy.deepcopy(self.config)
        parts = key.split(".")
        node = config
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        return self.model_copy(update={"config": config, "updated_at": _utcnow()})

    def database_name(self, prefix: str = "tenant_") -> str:
        """Explicit database name, or prefix followed by the tenant id."""
        if self.database:
            return self.database
        return f"{prefix}{self.id}"

    def __str__(self) -> str:
        return f"Tenant({self.id})"


class ProvisioningStep(BaseModel):
    """Outcome of one provisioning step (create, migrate, seed, directories)."""

    model_config = ConfigDict(frozen=True)

    name: str
    success: bool
    error: str | None = None


class ProvisioningReport(BaseModel):
    """
    Result of best-effort tenant provisioning.

    Steps run in order; a failed step does not roll back the tenant
    record, it is recorded here for the caller to inspect.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str | int
    steps: tuple[ProvisioningStep, ...] = ()

    @property
    def succeeded(self) -> bool:
        """True when every attempted step succeeded."""
        return all(step.success for step in self.steps)

    @property
    def failed_steps(self) -> list[ProvisioningStep]:
        return [step for step in self.steps if not step.success]

    def step(self, name: str) -> ProvisioningStep | None:
        """Return the named step, or None if it was not attempted."""
        for candidate in self.steps:
            if candidate.name == name:
                return candidate
        return None


class TenantCreationResult(BaseModel):
    """The created tenant plus what happened while provisioning it."""

    model_config = ConfigDict(frozen=True)

    tenant: Tenant
    provisioning: ProvisioningReport

    @property
    def database_created(self) -> bool:
        step = self.provisioning.step("create")
        return step is not None and step.success


__all__ = [
    "Tenant",
    "ProvisioningStep",
    "ProvisioningReport",
    "TenantCreationResult",
]
