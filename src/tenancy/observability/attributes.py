"""
Standard span attributes for tenancy.

Attribute constants used across tenancy components for consistent span
naming. Database attributes follow OpenTelemetry semantic conventions.

Example:
    >>> from tenancy.observability.attributes import ATTR_TENANT_ID, SPAN_SWITCH
    >>>
    >>> with tracer.span(SPAN_SWITCH, {ATTR_TENANT_ID: str(tenant.id)}):
    ...     pass
"""

# =============================================================================
# Span Names
# =============================================================================

SPAN_DETECT = "tenancy.detect"
"""Resolving a tenant from an inbound request."""

SPAN_SWITCH = "tenancy.switch"
"""Applying isolation strategies and binding a tenant."""

SPAN_CLEAR = "tenancy.clear"
"""Removing isolation strategies and returning to landlord."""

SPAN_PROVISION = "tenancy.provision"
"""Provisioning a tenant's database, cache and storage."""

SPAN_NOTIFY = "tenancy.bus.notify"
"""Delivering a tenancy notification to its handlers."""

# =============================================================================
# Tenant Attributes
# =============================================================================

ATTR_TENANT_ID = "tenancy.tenant.id"
"""Identifier of the tenant involved in the operation."""

ATTR_PREVIOUS_TENANT_ID = "tenancy.tenant.previous_id"
"""Identifier of the tenant that was current before a switch."""

# =============================================================================
# Notification Attributes
# =============================================================================

ATTR_EVENT_TYPE = "tenancy.event.type"
"""Notification class name (TenantActivated, TenantCreated, ...)."""

ATTR_HANDLER_COUNT = "tenancy.handler.count"
"""Number of handlers a notification was delivered to."""

# =============================================================================
# Detection Attributes
# =============================================================================

ATTR_DETECTION_HOST = "tenancy.detection.host"
"""Host of the request being resolved."""

# =============================================================================
# Provisioning Attributes
# =============================================================================

ATTR_PROVISION_STEP = "tenancy.provision.step"
"""Provisioning step (create, migrate, seed, directories)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (sqlite, postgresql, mysql)."""


__all__ = [
    "SPAN_DETECT",
    "SPAN_SWITCH",
    "SPAN_CLEAR",
    "SPAN_PROVISION",
    "SPAN_NOTIFY",
    "ATTR_TENANT_ID",
    "ATTR_PREVIOUS_TENANT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_HANDLER_COUNT",
    "ATTR_DETECTION_HOST",
    "ATTR_PROVISION_STEP",
    "ATTR_DB_SYSTEM",
]
