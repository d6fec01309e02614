"""Unit tests for cache backends."""

from __future__ import annotations

import fnmatch
import re
from collections.abc import AsyncIterator
from typing import Any

import pytest

from tenancy.strategies import InMemoryCacheBackend, RedisCacheBackend


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio client calls the backend makes."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.expiry_ms: dict[str, int] = {}
        self.closed = False
        self.patterns: list[str] = []

    async def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, px: int | None = None) -> None:
        self.data[key] = value.encode()
        if px is not None:
            self.expiry_ms[key] = px

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def scan_iter(self, match: str) -> AsyncIterator[str]:
        self.patterns.append(match)
        # Redis escapes with a backslash, fnmatch with a one-character class
        pattern = re.sub(r"\\(.)", lambda m: f"[{m.group(1)}]", match)
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, pattern):
                yield key

    async def flushdb(self) -> None:
        self.data.clear()

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryCacheBackend:
    @pytest.mark.asyncio
    async def test_set_get_delete(self) -> None:
        backend = InMemoryCacheBackend()
        await backend.set("a", {"x": 1})
        assert await backend.get("a") == {"x": 1}
        assert await backend.has("a")
        assert await backend.delete("a")
        assert not await backend.delete("a")
        assert await backend.get("a") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        backend = InMemoryCacheBackend(clock=clock)
        await backend.set("a", 1, ttl=10)
        clock.now = 9.9
        assert await backend.get("a") == 1
        clock.now = 10
        assert await backend.get("a") is None
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_delete_prefix_only_touches_prefix(self) -> None:
        backend = InMemoryCacheBackend()
        await backend.set("tenant_a:x", 1)
        await backend.set("tenant_a:y", 2)
        await backend.set("tenant_ab:x", 3)
        await backend.set("global", 4)
        assert await backend.delete_prefix("tenant_a:") == 2
        assert sorted(backend.keys()) == ["global", "tenant_ab:x"]


class TestRedisCacheBackend:
    @pytest.mark.asyncio
    async def test_values_are_json_encoded(self) -> None:
        client = FakeRedis()
        backend = RedisCacheBackend(client)  # type: ignore[arg-type]
        await backend.set("plan", {"name": "pro"}, ttl=1.5)
        assert client.data["plan"] == b'{"name": "pro"}'
        assert client.expiry_ms["plan"] == 1500
        assert await backend.get("plan") == {"name": "pro"}

    @pytest.mark.asyncio
    async def test_namespace_prefixes_keys(self) -> None:
        client = FakeRedis()
        backend = RedisCacheBackend(client, namespace="tenant_acme")  # type: ignore[arg-type]
        await backend.set("plan", "pro")
        assert "tenant_acme:plan" in client.data
        assert await backend.delete("plan")

    @pytest.mark.asyncio
    async def test_namespaced_clear_leaves_other_keys(self) -> None:
        client = FakeRedis()
        acme = RedisCacheBackend(client, namespace="tenant_acme")  # type: ignore[arg-type]
        globex = RedisCacheBackend(client, namespace="tenant_globex")  # type: ignore[arg-type]
        await acme.set("a", 1)
        await acme.set("b", 2)
        await globex.set("a", 3)

        await acme.clear()

        assert list(client.data) == ["tenant_globex:a"]

    @pytest.mark.asyncio
    async def test_clear_without_namespace_flushes(self) -> None:
        client = FakeRedis()
        backend = RedisCacheBackend(client)  # type: ignore[arg-type]
        await backend.set("a", 1)
        await backend.clear()
        assert client.data == {}

    @pytest.mark.asyncio
    async def test_delete_prefix_matches_glob_characters_literally(self) -> None:
        client = FakeRedis()
        backend = RedisCacheBackend(client)  # type: ignore[arg-type]
        await backend.set("tenant_a*:x", 1)
        await backend.set("tenant_ab:x", 2)
        await backend.set("tenant_a?:x", 3)

        assert await backend.delete_prefix("tenant_a*:") == 1

        assert client.patterns == [r"tenant_a\*:*"]
        assert sorted(client.data) == ["tenant_a?:x", "tenant_ab:x"]

    @pytest.mark.asyncio
    async def test_close_leaves_shared_client_open(self) -> None:
        client = FakeRedis()
        await RedisCacheBackend(client, namespace="t").close()  # type: ignore[arg-type]
        assert client.closed is False


def _fake_redis_module(client: Any) -> Any:
    class Module:
        @staticmethod
        def from_url(url: str) -> Any:
            client.url = url
            return client

    return Module


class TestRedisClientCreation:
    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from tenancy.strategies import backends

        client = FakeRedis()
        monkeypatch.setattr(backends, "REDIS_AVAILABLE", True)
        monkeypatch.setattr(backends, "aioredis", _fake_redis_module(client))

        backend = RedisCacheBackend(url="redis://cache:6379/2")
        await backend.close()

        assert client.url == "redis://cache:6379/2"  # type: ignore[attr-defined]
        assert client.closed is True

    def test_missing_redis_package(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from tenancy.strategies import backends

        monkeypatch.setattr(backends, "REDIS_AVAILABLE", False)
        with pytest.raises(backends.RedisNotAvailableError):
            RedisCacheBackend(url="redis://localhost")
