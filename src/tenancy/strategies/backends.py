"""
Cache backends used by the cache isolation strategies.

- InMemoryCacheBackend: process-local dict with expiry
- RedisCacheBackend: redis.asyncio client (``pip install tenancy-py[redis]``)

Every backend can delete all keys under a prefix, which is how a single
tenant's namespace is flushed without touching anyone else's keys.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from redis.asyncio import Redis as RedisClient

try:
    import redis.asyncio as aioredis

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    aioredis = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def _glob_escape(text: str) -> str:
    """Escape Redis glob metacharacters so text matches literally in SCAN MATCH."""
    return _GLOB_SPECIAL.sub(r"\\\1", text)


class RedisNotAvailableError(ImportError):
    """Raised when redis package is not installed."""

    def __init__(self) -> None:
        super().__init__(
            "Redis package is not installed. Install it with: pip install tenancy-py[redis]"
        )


class CacheBackend(ABC):
    """Minimal async key/value store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, expiring after ttl seconds when given."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns the count removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Delete every key this backend owns."""

    async def close(self) -> None:
        """Release connections held by the backend."""


class InMemoryCacheBackend(CacheBackend):
    """
    Thread-safe in-memory backend.

    Args:
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.RLock()
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._data if key.startswith(prefix)]
            for key in doomed:
                del self._data[key]
        return len(doomed)

    async def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self) -> list[str]:
        """Snapshot of stored keys, including expired ones not yet evicted."""
        with self._lock:
            return list(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCacheBackend(CacheBackend):
    """
    Redis backend using redis.asyncio.

    Values are stored JSON-encoded. With a ``namespace`` every key is
    prefixed by it and clear() only removes that namespace; without one,
    clear() flushes the selected Redis database.

    Args:
        client: Existing redis.asyncio client (shared between backends,
            left open by close())
        url: Redis URL used to create a client when none is given
        namespace: Optional key namespace owned by this backend

    Raises:
        RedisNotAvailableError: If the redis package is not installed
    """

    def __init__(
        self,
        client: RedisClient | None = None,
        *,
        url: str | None = None,
        namespace: str | None = None,
    ) -> None:
        self._owns_client = client is None
        if client is None:
            if not REDIS_AVAILABLE:
                raise RedisNotAvailableError()
            client = aioredis.from_url(url or "redis://localhost:6379/0")
        self._client = client
        self._namespace = namespace

    @property
    def client(self) -> RedisClient:
        return self._client

    @property
    def namespace(self) -> str | None:
        return self._namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        payload = json.dumps(value)
        if ttl is not None:
            await self._client.set(self._key(key), payload, px=int(ttl * 1000))
        else:
            await self._client.set(self._key(key), payload)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._key(key)))

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[Any] = []
        async for key in self._client.scan_iter(match=f"{_glob_escape(self._key(prefix))}*"):
            batch.append(key)
            if len(batch) >= 500:
                removed += await self._client.delete(*batch)
                batch.clear()
        if batch:
            removed += await self._client.delete(*batch)
        return removed

    async def clear(self) -> None:
        if self._namespace:
            await self.delete_prefix("")
        else:
            await self._client.flushdb()

    async def close(self) -> None:
        # Shared clients are closed by whoever created them
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "REDIS_AVAILABLE",
    "RedisNotAvailableError",
    "CacheBackend",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
]
