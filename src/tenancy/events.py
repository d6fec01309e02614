"""
Tenant lifecycle notifications.

Events are published on the EventBus by TenancyManager (context switches)
and TenantLifecycle (directory changes). Subscribers react to them
independently, for example to warm caches or write audit logs.

Example:
    >>> from tenancy.events import TenantActivated
    >>>
    >>> async def on_activated(event: TenantActivated) -> None:
    ...     print(f"now serving {event.tenant.id}")
    >>>
    >>> manager.bus.subscribe(TenantActivated, on_activated)
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from tenancy.tenants.model import ProvisioningReport, Tenant


class TenancyEvent(BaseModel):
    """
    Base class for all tenancy notifications.

    Attributes:
        event_id: Unique identifier for this notification
        occurred_at: When it was raised (UTC)
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier",
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When event occurred (UTC)",
    )

    @property
    def event_type(self) -> str:
        return type(self).__name__


class TenantActivated(TenancyEvent):
    """A tenant was bound to the current unit of work."""

    tenant: Tenant
    previous_tenant: Tenant | None = None


class TenantDeactivated(TenancyEvent):
    """The current unit of work returned to landlord."""

    previous_tenant: Tenant | None = None


class TenantCreated(TenancyEvent):
    """A tenant record was created and provisioning was attempted."""

    tenant: Tenant
    provisioning: ProvisioningReport


class TenantUpdated(TenancyEvent):
    """A tenant record was modified."""

    tenant: Tenant


class TenantDeleted(TenancyEvent):
    """
    A tenant was deleted.

    Attributes:
        tenant_id: Identifier of the deleted tenant
        force: True for a hard delete (resources torn down), False for soft
    """

    tenant_id: str | int
    force: bool = False


__all__ = [
    "TenancyEvent",
    "TenantActivated",
    "TenantDeactivated",
    "TenantCreated",
    "TenantUpdated",
    "TenantDeleted",
]
