"""
Observability utilities for tenancy.

Provides the composition-based tracer and the standard span names and
attributes used by detection, context switching, provisioning and
notification delivery.

Note:
    OpenTelemetry is an optional dependency (``pip install tenancy-py[telemetry]``).
    Without it every tracer is a NullTracer.
"""

from tenancy.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_DETECTION_HOST,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_PREVIOUS_TENANT_ID,
    ATTR_PROVISION_STEP,
    ATTR_TENANT_ID,
    SPAN_CLEAR,
    SPAN_DETECT,
    SPAN_NOTIFY,
    SPAN_PROVISION,
    SPAN_SWITCH,
)
from tenancy.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
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
