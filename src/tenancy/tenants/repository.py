"""
Tenant directory interface and in-memory implementation.

The repository is the persistence collaborator the rest of the library
consumes: detectors look tenants up through it, and the lifecycle
orchestrator writes through it. It owns the uniqueness invariant for
tenant ids and for non-null domain and subdomain values.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from tenancy.exceptions import TenantAlreadyExistsError, TenantNotFoundError
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)

UNIQUE_FIELDS = ("domain", "subdomain")


def generate_tenant_id() -> str:
    """Generate an identifier for a tenant created without one."""
    return uuid4().hex


def _id_key(tenant_id: str | int) -> str:
    # Ids arriving from headers and paths are strings
    return str(tenant_id)


def _fold(value: str, case_sensitive: bool) -> str:
    return value if case_sensitive else value.lower()


def _is_live(tenant: Tenant) -> bool:
    return tenant.is_active and not tenant.is_deleted


def apply_changes(tenant: Tenant, changes: dict[str, Any]) -> Tenant:
    """
    Validate changes against the Tenant model and return the new snapshot.

    Raises:
        ValueError: If changes try to modify the id or name unknown fields
    """
    if "id" in changes and _id_key(changes["id"]) != _id_key(tenant.id):
        raise ValueError("Tenant id is immutable")
    unknown = set(changes) - set(Tenant.model_fields)
    if unknown:
        raise ValueError(f"Unknown tenant fields: {', '.join(sorted(unknown))}")
    data = tenant.model_dump()
    data.update(changes)
    data["updated_at"] = datetime.now(UTC)
    return Tenant.model_validate(data)


class TenantRepository(ABC):
    """
    Abstract tenant directory.

    Lookups used by detection (find_by_domain, find_by_subdomain,
    find_active) only return live tenants by default: active and not
    soft-deleted.
    """

    @abstractmethod
    async def get(self, tenant_id: str | int, include_deleted: bool = True) -> Tenant | None:
        """
        Fetch a tenant by id regardless of its active flag.

        Args:
            tenant_id: Tenant identifier (compared by string value)
            include_deleted: Also return soft-deleted tenants
        """

    @abstractmethod
    async def find_by_domain(
        self,
        domain: str,
        *,
        case_sensitive: bool = False,
        active_only: bool = True,
    ) -> Tenant | None:
        """Find the tenant whose domain equals the given host."""

    @abstractmethod
    async def find_by_subdomain(
        self,
        subdomain: str,
        *,
        case_sensitive: bool = False,
        active_only: bool = True,
    ) -> Tenant | None:
        """Find the tenant whose subdomain equals the given label."""

    async def find_active(self, tenant_id: str | int) -> Tenant | None:
        """Fetch a live tenant by id."""
        tenant = await self.get(tenant_id, include_deleted=False)
        if tenant is None or not _is_live(tenant):
            return None
        return tenant

    @abstractmethod
    async def list_all(self, include_deleted: bool = False) -> list[Tenant]:
        """List tenants ordered by creation time."""

    async def list_active(self) -> list[Tenant]:
        """List live tenants ordered by creation time."""
        return [t for t in await self.list_all() if t.is_active]

    @abstractmethod
    async def create(self, tenant: Tenant) -> Tenant:
        """
        Persist a new tenant.

        Raises:
            TenantAlreadyExistsError: If the id, domain or subdomain is taken
        """

    @abstractmethod
    async def update(self, tenant_id: str | int, **changes: Any) -> Tenant:
        """
        Apply field changes and return the new snapshot.

        Raises:
            TenantNotFoundError: If the tenant does not exist
            TenantAlreadyExistsError: If a changed domain/subdomain is taken
        """

    async def soft_delete(self, tenant_id: str | int) -> Tenant:
        """Mark a tenant deleted while keeping its record."""
        return await self.update(tenant_id, deleted_at=datetime.now(UTC))

    async def restore(self, tenant_id: str | int) -> Tenant:
        """Undo a soft delete."""
        return await self.update(tenant_id, deleted_at=None)

    @abstractmethod
    async def delete(self, tenant_id: str | int) -> bool:
        """Remove the record permanently. Returns False if it did not exist."""


class InMemoryTenantRepository(TenantRepository):
    """
    Thread-safe in-memory tenant directory.

    Suitable for tests, examples and single-process deployments whose
    tenant list is loaded at startup.

    Example:
        >>> repo = InMemoryTenantRepository([Tenant(id="acme", domain="acme.test")])
        >>> await repo.find_by_domain("ACME.test")
        Tenant(acme)
    """

    def __init__(self, tenants: list[Tenant] | None = None) -> None:
        self._tenants: dict[str, Tenant] = {}
        self._lock = threading.RLock()
        for tenant in tenants or []:
            self._insert(tenant)

    def _check_unique(self, tenant: Tenant, ignore_id: str | None = None) -> None:
        for other_key, other in self._tenants.items():
            if other_key == ignore_id:
                continue
            for field in UNIQUE_FIELDS:
                value = getattr(tenant, field)
                other_value = getattr(other, field)
                if value and other_value and value.lower() == other_value.lower():
                    raise TenantAlreadyExistsError(field, value)

    def _insert(self, tenant: Tenant) -> Tenant:
        key = _id_key(tenant.id)
        with self._lock:
            if key in self._tenants:
                raise TenantAlreadyExistsError("id", tenant.id)
            self._check_unique(tenant)
            self._tenants[key] = tenant
        return tenant

    async def get(self, tenant_id: str | int, include_deleted: bool = True) -> Tenant | None:
        with self._lock:
            tenant = self._tenants.get(_id_key(tenant_id))
        if tenant is not None and tenant.is_deleted and not include_deleted:
            return None
        return tenant

    def _find_by(
        self, field: str, value: str, case_sensitive: bool, active_only: bool
    ) -> Tenant | None:
        needle = _fold(value, case_sensitive)
        with self._lock:
            candidates = list(self._tenants.values())
        for tenant in candidates:
            stored = getattr(tenant, field)
            if stored is None or _fold(stored, case_sensitive) != needle:
                continue
            if active_only and not _is_live(tenant):
                continue
            return tenant
        return None

    async def find_by_domain(
        self,
        domain: str,
        *,
        case_sensitive: bool = False,
        active_only: bool = True,
    ) -> Tenant | None:
        return self._find_by("domain", domain, case_sensitive, active_only)

    async def find_by_subdomain(
        self,
        subdomain: str,
        *,
        case_sensitive: bool = False,
        active_only: bool = True,
    ) -> Tenant | None:
        return self._find_by("subdomain", subdomain, case_sensitive, active_only)

    async def list_all(self, include_deleted: bool = False) -> list[Tenant]:
        with self._lock:
            tenants = list(self._tenants.values())
        if not include_deleted:
            tenants = [t for t in tenants if not t.is_deleted]
        return sorted(tenants, key=lambda t: t.created_at)

    async def create(self, tenant: Tenant) -> Tenant:
        created = self._insert(tenant)
        logger.debug("Tenant record created", extra={"tenant_id": tenant.id})
        return created

    async def update(self, tenant_id: str | int, **changes: Any) -> Tenant:
        key = _id_key(tenant_id)
        with self._lock:
            current = self._tenants.get(key)
            if current is None:
                raise TenantNotFoundError(tenant_id)
            updated = apply_changes(current, changes)
            self._check_unique(updated, ignore_id=key)
            self._tenants[key] = updated
        return updated

    async def delete(self, tenant_id: str | int) -> bool:
        with self._lock:
            return self._tenants.pop(_id_key(tenant_id), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._tenants)


__all__ = [
    "TenantRepository",
    "InMemoryTenantRepository",
    "generate_tenant_id",
    "apply_changes",
    "UNIQUE_FIELDS",
]
