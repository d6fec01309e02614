"""Notification bus for tenancy events."""

from tenancy.bus.adapter import HandlerAdapter
from tenancy.bus.interface import EventBus, EventHandler, EventHandlerFunc, FlexibleEventHandler
from tenancy.bus.memory import InMemoryEventBus

__all__ = [
    "EventBus",
    "EventHandler",
    "EventHandlerFunc",
    "FlexibleEventHandler",
    "HandlerAdapter",
    "InMemoryEventBus",
]
