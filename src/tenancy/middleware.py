"""
ASGI integration.

TenancyMiddleware resolves the tenant for each http/websocket connection
and runs the downstream application inside ``manager.request_scope``, in
the same task, so the tenant binding is visible to every handler and is
restored when the response completes. Lifespan and other scope types
pass through untouched.

Example:
    >>> app = TenancyMiddleware(RequireTenantMiddleware(api, manager), manager)
"""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any, TypeVar

from tenancy.context import get_current_tenant
from tenancy.exceptions import TenantNotFoundError
from tenancy.manager import TenancyManager
from tenancy.requests import RequestDescriptor

logger = logging.getLogger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

NO_TENANT_DETAIL = "No tenant found for this request."

_TENANT_SCOPES = ("http", "websocket")


class TenancyMiddleware:
    """
    Detect and bind the tenant for each request.

    The detected tenant (or None) is also stored in ``scope["tenant"]``.

    Args:
        app: Downstream ASGI application
        manager: TenancyManager that performs detection and switching
    """

    def __init__(self, app: ASGIApp, manager: TenancyManager) -> None:
        self.app = app
        self.manager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in _TENANT_SCOPES:
            await self.app(scope, receive, send)
            return

        request = RequestDescriptor.from_asgi_scope(scope)
        async with self.manager.request_scope(request) as tenant:
            scope["tenant"] = tenant
            await self.app(scope, receive, send)


class RequireTenantMiddleware:
    """
    Reject requests that have no tenant bound.

    Must run inside TenancyMiddleware. Responds 404 with
    ``{"detail": "No tenant found for this request."}``; websocket
    connections are closed instead.
    """

    def __init__(self, app: ASGIApp, manager: TenancyManager | None = None) -> None:
        self.app = app
        self.manager = manager

    def _has_tenant(self) -> bool:
        if self.manager is not None:
            return self.manager.has_tenant()
        return get_current_tenant() is not None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in _TENANT_SCOPES or self._has_tenant():
            await self.app(scope, receive, send)
            return

        logger.debug(
            f"Rejecting request without tenant: {scope.get('path')}",
            extra={"path": scope.get("path")},
        )
        if scope["type"] == "websocket":
            await send({"type": "websocket.close", "code": 4404})
            return

        body = json.dumps({"detail": NO_TENANT_DETAIL}).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": 404,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})


def requires_tenant(func: F) -> F:
    """
    Guard an async handler so it only runs with a tenant bound.

    Raises:
        TenantNotFoundError: If called while running as landlord
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if get_current_tenant() is None:
            raise TenantNotFoundError()
        return await func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


__all__ = [
    "TenancyMiddleware",
    "RequireTenantMiddleware",
    "requires_tenant",
    "NO_TENANT_DETAIL",
]
