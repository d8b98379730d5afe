"""
Cache port for authorization lookups.

Read paths may be cached with a bounded TTL. Every mutation evicts the keys it
can affect right after its commit. A failed read degrades to a miss; a failed
eviction raises CacheError, since a stale authorization decision is worse
than a failed request.
"""
import json
import time
from typing import Any, Protocol

import redis.asyncio as redis
import structlog

from tenant_authz.config import settings
from tenant_authz.exceptions import CacheError

logger = structlog.get_logger()


class CachePort(Protocol):
    """Minimal cache contract used by the stores and the resolver."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...

    async def delete(self, *keys: str) -> None: ...


class CacheKeys:
    """
    Key builders. Nothing else in the codebase spells a cache key.

    A None organisation means the global/system scope.
    """

    @staticmethod
    def _scope(organisation_id: int | None) -> str:
        return "system" if organisation_id is None else str(organisation_id)

    @staticmethod
    def user_roles(organisation_id: int, user_id: int) -> str:
        return f"roles:{organisation_id}:{user_id}"

    @staticmethod
    def organisation_roles(organisation_id: int) -> str:
        return f"roles:{organisation_id}:all"

    @staticmethod
    def user_permissions(organisation_id: int, user_id: int) -> str:
        return f"permissions:{organisation_id}:{user_id}"

    @staticmethod
    def user_overrides(organisation_id: int, user_id: int) -> str:
        return f"overrides:{organisation_id}:{user_id}"

    @classmethod
    def templates(cls, organisation_id: int | None) -> str:
        return f"templates:{cls._scope(organisation_id)}"

    @staticmethod
    def all_templates() -> str:
        return "templates:all"

    @classmethod
    def template_by_name(cls, organisation_id: int | None, name: str) -> str:
        return f"template-name:{cls._scope(organisation_id)}:{name}"

    @staticmethod
    def template_permissions(template_id: int) -> str:
        return f"template-permissions:{template_id}"

    @classmethod
    def principal_keys(cls, organisation_id: int, user_id: int) -> list[str]:
        """Every per-principal key derived from roles or overrides."""
        return [
            cls.user_roles(organisation_id, user_id),
            cls.user_permissions(organisation_id, user_id),
            cls.user_overrides(organisation_id, user_id),
        ]


class RedisCache:
    """Redis-backed cache storing JSON values with a TTL."""

    def __init__(self, redis_url: str | None = None, default_ttl: int | None = None, prefix: str = "authz:"):
        self.redis_url = redis_url or settings.REDIS_URL
        self.default_ttl = settings.CACHE_TTL_SECONDS if default_ttl is None else default_ttl
        self.prefix = prefix
        self._redis = None

    async def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def get(self, key: str) -> Any | None:
        try:
            client = await self.get_redis()
            raw = await client.get(self.prefix + key)
        except Exception as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None  # Cache down - treat as a miss
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        try:
            client = await self.get_redis()
            await client.setex(self.prefix + key, self.default_ttl if ttl is None else ttl, json.dumps(value))
        except Exception as e:
            logger.warning("cache_set_failed", key=key, error=str(e))

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            client = await self.get_redis()
            await client.delete(*(self.prefix + key for key in keys))
        except Exception as e:
            logger.error("cache_evict_failed", keys=list(keys), error=str(e))
            raise CacheError(f"Failed to evict {len(keys)} cache key(s)") from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class InMemoryCache:
    """
    Process-local cache with the same JSON round-trip as RedisCache.

    Used by tests and single-process deployments.
    """

    def __init__(self, default_ttl: int | None = None):
        self.default_ttl = settings.CACHE_TTL_SECONDS if default_ttl is None else default_ttl
        self._store: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if time.monotonic() >= expires_at:
            self._store.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._store[key] = (time.monotonic() + (self.default_ttl if ttl is None else ttl), json.dumps(value))

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._store)

    def clear(self) -> None:
        self._store.clear()


def build_cache(backend: str | None = None) -> CachePort:
    """Create the cache configured by CACHE_BACKEND."""
    backend = backend or settings.CACHE_BACKEND
    if backend == "memory":
        return InMemoryCache()
    if backend == "redis":
        return RedisCache()
    raise ValueError(f"Unknown cache backend: {backend}")
