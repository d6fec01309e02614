"""
Inbound request descriptor consumed by tenant detectors.

Detectors never see framework request objects. The web adapter (or a
job runner) builds a RequestDescriptor carrying just the host, headers
and path.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit


def _strip_port(host: str) -> str:
    host = host.strip()
    if host.startswith("["):
        # IPv6 literal, keep the brackets
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    return host.split(":", 1)[0]


@dataclass(frozen=True)
class RequestDescriptor:
    """
    The parts of an inbound request that identify a tenant.

    Header lookups are case-insensitive.

    Attributes:
        host: Request host without port
        headers: Request headers
        path: Request path

    Example:
        >>> request = RequestDescriptor.from_url("https://acme.example.com/app/x")
        >>> request.host
        'acme.example.com'
        >>> request.segments
        ('app', 'x')
    """

    host: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    path: str = "/"

    def __post_init__(self) -> None:
        normalized = {str(k).lower(): str(v) for k, v in self.headers.items()}
        object.__setattr__(self, "headers", normalized)

    def header(self, name: str, default: str | None = None) -> str | None:
        """Return the header value, or default when absent."""
        return self.headers.get(name.lower(), default)

    @property
    def segments(self) -> tuple[str, ...]:
        """Non-empty path segments."""
        return tuple(part for part in self.path.split("/") if part)

    def segment(self, index: int) -> str | None:
        """Return the path segment at a 0-based index, or None."""
        segments = self.segments
        if 0 <= index < len(segments):
            return segments[index]
        return None

    @classmethod
    def from_url(cls, url: str, headers: Mapping[str, str] | None = None) -> RequestDescriptor:
        """Build a descriptor from an absolute URL."""
        parts = urlsplit(url)
        return cls(
            host=(parts.hostname or "").lower(),
            headers=dict(headers or {}),
            path=parts.path or "/",
        )

    @classmethod
    def from_asgi_scope(cls, scope: Mapping[str, Any]) -> RequestDescriptor:
        """
        Build a descriptor from an ASGI http/websocket scope.

        The host comes from the Host header, falling back to the server
        address in the scope.
        """
        headers: dict[str, str] = {}
        for raw_name, raw_value in scope.get("headers") or []:
            name = raw_name.decode("latin-1") if isinstance(raw_name, bytes) else raw_name
            value = raw_value.decode("latin-1") if isinstance(raw_value, bytes) else raw_value
            headers[name.lower()] = value

        host = headers.get("host", "")
        if not host and scope.get("server"):
            host = str(scope["server"][0])
        return cls(
            host=_strip_port(host).lower(),
            headers=headers,
            path=scope.get("path") or "/",
        )


__all__ = ["RequestDescriptor"]
