"""Notification bus interface definitions.

The bus decouples the code that switches and provisions tenants from the
code that reacts to it (cache warmers, audit logs, metrics).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from tenancy.events import TenancyEvent

# Type alias for simple function-based handlers
EventHandlerFunc = Callable[[TenancyEvent], Awaitable[None] | None]


@runtime_checkable
class EventHandler(Protocol):
    """Object-style handler: anything with a sync or async handle(event)."""

    def handle(self, event: TenancyEvent) -> Any: ...


FlexibleEventHandler = EventHandler | EventHandlerFunc


class EventBus(ABC):
    """
    Abstract bus for publishing and subscribing to tenancy events.

    Implementations must be thread-safe for subscription management and
    support both synchronous and asynchronous handlers. A failing handler
    must never prevent other handlers from running, and must never fail
    the operation that published the event.

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(TenantActivated, on_activated)
        >>> bus.subscribe_to_all_events(audit_logger)
        >>> await bus.publish([TenantActivated(tenant=acme)])
    """

    @abstractmethod
    async def publish(
        self,
        events: list[TenancyEvent],
        background: bool = False,
    ) -> None:
        """
        Publish events to all registered subscribers.

        Events are processed in order, and all handlers for each event
        are invoked before moving to the next event.

        Args:
            events: List of events to publish
            background: If True, publish without blocking (fire-and-forget)
        """

    @abstractmethod
    def subscribe(
        self,
        event_type: type[TenancyEvent],
        handler: FlexibleEventHandler,
    ) -> None:
        """
        Subscribe a handler to a specific event type.

        Args:
            event_type: The event class to subscribe to
            handler: Object with handle() method or callable
        """

    @abstractmethod
    def unsubscribe(
        self,
        event_type: type[TenancyEvent],
        handler: FlexibleEventHandler,
    ) -> bool:
        """
        Unsubscribe a handler from a specific event type.

        Returns:
            True if the handler was found and removed, False otherwise
        """

    @abstractmethod
    def subscribe_to_all_events(self, handler: FlexibleEventHandler) -> None:
        """Subscribe a handler to every event type (wildcard subscription)."""

    @abstractmethod
    def unsubscribe_from_all_events(self, handler: FlexibleEventHandler) -> bool:
        """
        Unsubscribe a handler from the wildcard subscription.

        Returns:
            True if the handler was found and removed, False otherwise
        """


__all__ = [
    "EventBus",
    "EventHandler",
    "EventHandlerFunc",
    "FlexibleEventHandler",
]
