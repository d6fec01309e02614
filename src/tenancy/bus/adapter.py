"""
Handler adapter for normalizing event handlers.

Handlers may be objects with a sync or async handle() method, or plain
sync or async callables. HandlerAdapter wraps each of them behind one
async interface so the bus never has to type-check at dispatch time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tenancy.events import TenancyEvent

logger = logging.getLogger(__name__)

AsyncHandlerFunc = Callable[[TenancyEvent], Awaitable[None]]


def get_handler_name(handler: Any) -> str:
    """Get a descriptive name for a handler for logging."""
    if hasattr(handler, "__class__") and handler.__class__.__name__ not in ("function", "method"):
        return str(handler.__class__.__name__)
    elif hasattr(handler, "__qualname__"):
        return str(handler.__qualname__)
    elif hasattr(handler, "__name__"):
        return str(handler.__name__)
    return repr(handler)


class HandlerAdapter:
    """
    Adapter that normalizes event handlers to a consistent async interface.

    Equality and hashing follow the identity of the original handler, so a
    fresh adapter can be used to find and remove an existing subscription.

    Attributes:
        original: The original unwrapped handler
        name: Descriptive name for logging
    """

    def __init__(self, handler: Any) -> None:
        """
        Args:
            handler: Object with handle() method or callable

        Raises:
            TypeError: If handler doesn't have handle() method and isn't callable
        """
        self._original = handler
        self._name = get_handler_name(handler)
        self._async_handler = self._normalize(handler)

    @staticmethod
    def _wrap_sync(func: Callable[[TenancyEvent], Any]) -> AsyncHandlerFunc:
        async def async_wrapper(event: TenancyEvent) -> None:
            result = func(event)
            # Sync callables may still hand back a coroutine
            if asyncio.iscoroutine(result):
                await result

        return async_wrapper

    def _normalize(self, handler: Any) -> AsyncHandlerFunc:
        if hasattr(handler, "handle"):
            method = handler.handle
            if asyncio.iscoroutinefunction(method):
                return method  # type: ignore[no-any-return]
            return self._wrap_sync(method)
        if callable(handler):
            if asyncio.iscoroutinefunction(handler):
                return handler  # type: ignore[no-any-return]
            return self._wrap_sync(handler)
        raise TypeError(
            f"Handler must have a handle() method or be callable, got {type(handler)}"
        )

    @property
    def original(self) -> Any:
        """Get the original unwrapped handler."""
        return self._original

    @property
    def name(self) -> str:
        """Get the handler's descriptive name."""
        return self._name

    async def handle(self, event: TenancyEvent) -> None:
        await self._async_handler(event)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HandlerAdapter):
            return self._original is other._original
        return self._original is other

    def __hash__(self) -> int:
        return id(self._original)

    def __repr__(self) -> str:
        return f"HandlerAdapter({self._name})"


__all__ = [
    "HandlerAdapter",
    "AsyncHandlerFunc",
    "get_handler_name",
]
