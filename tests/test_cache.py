"""
Cache backend tests.
"""
from types import SimpleNamespace

import pytest

from tenant_authz.exceptions import CacheError
from tenant_authz.services import cache as cache_module
from tenant_authz.services.cache import CacheKeys, InMemoryCache, RedisCache, build_cache


class FakeRedis:
    """Dict-backed stand-in for redis.asyncio.Redis."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value.encode()
        self.ttls[key] = ttl

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)


class BrokenRedis:
    async def get(self, key):
        raise ConnectionError("redis is down")

    async def setex(self, key, ttl, value):
        raise ConnectionError("redis is down")

    async def delete(self, *keys):
        raise ConnectionError("redis is down")


def test_cache_key_formats():
    assert CacheKeys.user_roles(3, 7) == "roles:3:7"
    assert CacheKeys.organisation_roles(3) == "roles:3:all"
    assert CacheKeys.user_permissions(3, 7) == "permissions:3:7"
    assert CacheKeys.user_overrides(3, 7) == "overrides:3:7"
    assert CacheKeys.templates(3) == "templates:3"
    assert CacheKeys.templates(None) == "templates:system"
    assert CacheKeys.all_templates() == "templates:all"
    assert CacheKeys.template_by_name(None, "admin") == "template-name:system:admin"
    assert CacheKeys.template_permissions(12) == "template-permissions:12"
    assert CacheKeys.principal_keys(3, 7) == ["roles:3:7", "permissions:3:7", "overrides:3:7"]


async def test_in_memory_cache_expires_entries(monkeypatch):
    now = {"t": 1000.0}
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(monotonic=lambda: now["t"]))
    cache = InMemoryCache(default_ttl=60)

    await cache.set("roles:1:1", [{"id": 1}])
    await cache.set("overrides:1:1", {"board.view": False}, ttl=5)

    now["t"] += 10
    assert await cache.get("roles:1:1") == [{"id": 1}]
    assert await cache.get("overrides:1:1") is None
    assert cache.keys() == ["roles:1:1"]

    now["t"] += 60
    assert await cache.get("roles:1:1") is None


async def test_in_memory_cache_delete_ignores_missing_keys():
    cache = InMemoryCache()
    await cache.set("a", 1)

    await cache.delete("a", "b")

    assert cache.keys() == []


async def test_redis_cache_round_trips_json():
    cache = RedisCache(redis_url="redis://unused", default_ttl=30)
    fake = FakeRedis()
    cache._redis = fake

    await cache.set("permissions:1:2", ["board.view", "task.view"])

    assert fake.ttls["authz:permissions:1:2"] == 30
    assert await cache.get("permissions:1:2") == ["board.view", "task.view"]
    await cache.delete("permissions:1:2")
    assert await cache.get("permissions:1:2") is None


async def test_redis_read_failure_is_a_miss():
    cache = RedisCache(redis_url="redis://unused")
    cache._redis = BrokenRedis()

    assert await cache.get("roles:1:1") is None
    # Writes are best effort
    await cache.set("roles:1:1", [])


async def test_redis_eviction_failure_raises():
    cache = RedisCache(redis_url="redis://unused")
    cache._redis = BrokenRedis()

    with pytest.raises(CacheError):
        await cache.delete("roles:1:1")


async def test_empty_eviction_never_touches_redis():
    cache = RedisCache(redis_url="redis://unused")
    cache._redis = BrokenRedis()

    await cache.delete()


def test_build_cache():
    assert isinstance(build_cache("memory"), InMemoryCache)
    assert isinstance(build_cache("redis"), RedisCache)
    with pytest.raises(ValueError):
        build_cache("memcached")


def test_key_kinds_never_share_a_name():
    assert CacheKeys.template_by_name(7, "permissions") != CacheKeys.template_permissions(7)
    assert CacheKeys.templates(None) != CacheKeys.all_templates()
    assert CacheKeys.user_roles(3, 7) != CacheKeys.organisation_roles(3)


async def test_explicit_zero_ttl_is_not_the_default(monkeypatch):
    now = {"t": 50.0}
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(monotonic=lambda: now["t"]))
    cache = InMemoryCache(default_ttl=60)

    await cache.set("roles:1:1", ["member"], ttl=0)

    assert await cache.get("roles:1:1") is None
    assert InMemoryCache(default_ttl=0).default_ttl == 0
    assert RedisCache(redis_url="redis://unused", default_ttl=0).default_ttl == 0
