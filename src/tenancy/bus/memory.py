"""In-memory notification bus.

The default bus of TenancyManager. Activation, deactivation and lifecycle
notifications go to handlers registered in the same process.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict

from tenancy.bus.adapter import HandlerAdapter
from tenancy.bus.interface import EventBus, FlexibleEventHandler
from tenancy.events import TenancyEvent
from tenancy.observability import (
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_TENANT_ID,
    SPAN_NOTIFY,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventBus):
    """
    Deliver tenancy notifications to in-process handlers.

    Every handler of a notification runs even if another one raises; the
    failure is logged and never reaches the switch or lifecycle operation
    that published it. With background=True the manager does not wait
    for delivery, and shutdown() drains what is still in flight.

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(TenantActivated, warm_cache)
        >>> manager = TenancyManager(config, repository, bus=bus)
    """

    def __init__(self, *, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._handlers: dict[type[TenancyEvent], list[HandlerAdapter]] = defaultdict(list)
        self._wildcard: list[HandlerAdapter] = []
        self._lock = threading.RLock()
        self._pending: set[asyncio.Task[None]] = set()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def publish(self, events: list[TenancyEvent], background: bool = False) -> None:
        if not events:
            return
        if not background:
            await self._deliver_all(events)
            return

        task = asyncio.create_task(self._deliver_all(events))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug(
            f"Delivering {len(events)} notification(s) in the background",
            extra={"event_count": len(events)},
        )

    async def _deliver_all(self, events: list[TenancyEvent]) -> None:
        for event in events:
            await self._deliver(event)

    async def _deliver(self, event: TenancyEvent) -> None:
        with self._lock:
            handlers = [*self._handlers.get(type(event), ()), *self._wildcard]
        if not handlers:
            return

        tenant = getattr(event, "tenant", None)
        attributes = {ATTR_EVENT_TYPE: event.event_type, ATTR_HANDLER_COUNT: len(handlers)}
        if tenant is not None:
            attributes[ATTR_TENANT_ID] = str(tenant.id)
        with self._tracer.span(SPAN_NOTIFY, attributes):
            await asyncio.gather(*(self._run_handler(handler, event) for handler in handlers))

    async def _run_handler(self, handler: HandlerAdapter, event: TenancyEvent) -> None:
        try:
            await handler.handle(event)
        except Exception as e:
            logger.error(
                f"Handler {handler.name} failed on {event.event_type}: {e}",
                exc_info=True,
                extra={
                    "handler": handler.name,
                    "event_type": event.event_type,
                    "event_id": str(event.event_id),
                },
            )

    def subscribe(self, event_type: type[TenancyEvent], handler: FlexibleEventHandler) -> None:
        adapter = HandlerAdapter(handler)
        with self._lock:
            self._handlers[event_type].append(adapter)
        logger.debug(
            f"Subscribed {adapter.name} to {event_type.__name__}",
            extra={"handler": adapter.name, "event_type": event_type.__name__},
        )

    def unsubscribe(self, event_type: type[TenancyEvent], handler: FlexibleEventHandler) -> bool:
        with self._lock:
            return _remove(self._handlers.get(event_type, []), handler)

    def subscribe_to_all_events(self, handler: FlexibleEventHandler) -> None:
        adapter = HandlerAdapter(handler)
        with self._lock:
            self._wildcard.append(adapter)
        logger.debug(
            f"Subscribed {adapter.name} to all notifications", extra={"handler": adapter.name}
        )

    def unsubscribe_from_all_events(self, handler: FlexibleEventHandler) -> bool:
        with self._lock:
            return _remove(self._wildcard, handler)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Wait for background deliveries; cancel those still running after timeout."""
        if not self._pending:
            return
        _, unfinished = await asyncio.wait(list(self._pending), timeout=timeout)
        for task in unfinished:
            task.cancel()
        if unfinished:
            logger.warning(
                f"Cancelled {len(unfinished)} notification delivery task(s) at shutdown",
                extra={"remaining_tasks": len(unfinished)},
            )
            await asyncio.gather(*unfinished, return_exceptions=True)


def _remove(adapters: list[HandlerAdapter], handler: FlexibleEventHandler) -> bool:
    # HandlerAdapter compares equal to the handler it wraps
    for i, adapter in enumerate(adapters):
        if adapter == handler:
            del adapters[i]
            return True
    return False


__all__ = ["InMemoryEventBus"]
