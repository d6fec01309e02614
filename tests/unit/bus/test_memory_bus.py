"""
Unit tests for InMemoryEventBus.

Tests cover:
- Typed and wildcard subscriptions with sync, async and handle() handlers
- Handler failures isolated from the publisher and from other handlers
- Background delivery and shutdown
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from tenancy.bus import HandlerAdapter, InMemoryEventBus
from tenancy.events import TenancyEvent, TenantActivated, TenantDeactivated
from tenancy.observability import SPAN_NOTIFY, MockTracer
from tenancy.tenants.model import Tenant
from tests.fixtures import make_tenant

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def activated() -> TenantActivated:
    return TenantActivated(tenant=make_tenant("acme"))


class RecordingHandler:
    """Handler object with an async handle() method."""

    def __init__(self) -> None:
        self.events: list[TenancyEvent] = []

    async def handle(self, event: TenancyEvent) -> None:
        self.events.append(event)


# =============================================================================
# Subscriptions
# =============================================================================


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_typed_subscription_only_sees_its_type(
        self, bus: InMemoryEventBus, activated: TenantActivated
    ) -> None:
        seen: list[TenancyEvent] = []
        bus.subscribe(TenantActivated, seen.append)

        await bus.publish([activated, TenantDeactivated()])

        assert seen == [activated]

    @pytest.mark.asyncio
    async def test_async_callable_and_handler_object(
        self, bus: InMemoryEventBus, activated: TenantActivated
    ) -> None:
        seen: list[Tenant] = []

        async def on_activated(event: TenantActivated) -> None:
            seen.append(event.tenant)

        recorder = RecordingHandler()
        bus.subscribe(TenantActivated, on_activated)
        bus.subscribe(TenantActivated, recorder)

        await bus.publish([activated])

        assert [t.id for t in seen] == ["acme"]
        assert recorder.events == [activated]

    @pytest.mark.asyncio
    async def test_wildcard_subscription(
        self, bus: InMemoryEventBus, activated: TenantActivated
    ) -> None:
        seen: list[str] = []
        bus.subscribe_to_all_events(lambda event: seen.append(event.event_type))

        await bus.publish([activated, TenantDeactivated()])

        assert seen == ["TenantActivated", "TenantDeactivated"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus: InMemoryEventBus, activated: TenantActivated) -> None:
        typed = RecordingHandler()
        wildcard = RecordingHandler()
        bus.subscribe(TenantActivated, typed)
        bus.subscribe_to_all_events(wildcard)

        assert bus.unsubscribe(TenantDeactivated, typed) is False
        assert bus.unsubscribe(TenantActivated, typed) is True
        assert bus.unsubscribe(TenantActivated, typed) is False
        assert bus.unsubscribe_from_all_events(wildcard) is True

        await bus.publish([activated])
        assert typed.events == []
        assert wildcard.events == []

    def test_rejects_non_callable_handler(self) -> None:
        with pytest.raises(TypeError):
            HandlerAdapter(42)


# =============================================================================
# Error isolation
# =============================================================================


class TestHandlerErrors:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_reach_publisher(
        self,
        bus: InMemoryEventBus,
        activated: TenantActivated,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        seen: list[TenancyEvent] = []

        def explode(event: TenancyEvent) -> None:
            raise RuntimeError("audit log unavailable")

        bus.subscribe(TenantActivated, explode)
        bus.subscribe(TenantActivated, seen.append)

        with caplog.at_level(logging.ERROR, logger="tenancy.bus.memory"):
            await bus.publish([activated])

        assert seen == [activated]
        [record] = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert "failed on TenantActivated: audit log unavailable" in record.getMessage()
        assert record.event_id == str(activated.event_id)  # type: ignore[attr-defined]


# =============================================================================
# Background delivery
# =============================================================================


class TestBackgroundDelivery:
    @pytest.mark.asyncio
    async def test_background_publish_completes_on_shutdown(
        self, bus: InMemoryEventBus, activated: TenantActivated
    ) -> None:
        release = asyncio.Event()
        seen: list[TenancyEvent] = []

        async def slow(event: TenancyEvent) -> None:
            await release.wait()
            seen.append(event)

        bus.subscribe(TenantActivated, slow)
        await bus.publish([activated], background=True)

        assert seen == []

        release.set()
        await bus.shutdown(timeout=1)

        assert seen == [activated]

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stuck_deliveries(
        self, bus: InMemoryEventBus, activated: TenantActivated
    ) -> None:
        cancelled = asyncio.Event()

        async def stuck(event: TenancyEvent) -> None:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        bus.subscribe(TenantActivated, stuck)
        await bus.publish([activated], background=True)
        await asyncio.sleep(0)

        await bus.shutdown(timeout=0.01)

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_shutdown_without_pending_work(self, bus: InMemoryEventBus) -> None:
        await bus.shutdown(timeout=0)


# =============================================================================
# Tracing
# =============================================================================


class TestTracing:
    @pytest.mark.asyncio
    async def test_notify_span(self, activated: TenantActivated) -> None:
        tracer = MockTracer()
        bus = InMemoryEventBus(tracer=tracer)
        bus.subscribe(TenantActivated, lambda event: None)

        await bus.publish([activated])

        assert tracer.spans == [
            (
                SPAN_NOTIFY,
                {
                    "tenancy.event.type": "TenantActivated",
                    "tenancy.handler.count": 1,
                    "tenancy.tenant.id": "acme",
                },
            )
        ]

    @pytest.mark.asyncio
    async def test_no_span_without_handlers(self, activated: TenantActivated) -> None:
        tracer = MockTracer()
        await InMemoryEventBus(tracer=tracer).publish([activated])
        assert tracer.spans == []
