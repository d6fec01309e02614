"""
Tracers for detection, switching, provisioning and notification spans.

Components take a Tracer at construction. Without the telemetry extra,
or with enable_tracing=False, they get a NullTracer and spans cost nothing.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Anything that opens a named span with attributes."""

    def span(
        self, name: str, attributes: SpanAttributes | None = None
    ) -> AbstractContextManager[Any]: ...


class NullTracer:
    """Tracer used when tracing is off."""

    @contextlib.contextmanager
    def span(self, name: str, attributes: SpanAttributes | None = None) -> Iterator[None]:
        yield None


class OpenTelemetryTracer:
    """Opens spans on the global OpenTelemetry tracer provider."""

    def __init__(self, tracer_name: str) -> None:
        if not OTEL_AVAILABLE:
            raise ImportError("OpenTelemetry is not installed; pip install tenancy-py[telemetry]")
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self, name: str, attributes: SpanAttributes | None = None
    ) -> AbstractContextManager[Any]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})


class MockTracer:
    """
    Records the spans a component opens, in order.

    Example:
        >>> tracer = MockTracer()
        >>> manager = TenancyManager(config, repository, tracer=tracer)
        >>> await manager.switch(acme)
        >>> tracer.span_names
        ['tenancy.switch']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextlib.contextmanager
    def span(self, name: str, attributes: SpanAttributes | None = None) -> Iterator[None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetryTracer when enabled and installed, NullTracer otherwise."""
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
