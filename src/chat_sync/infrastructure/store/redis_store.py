"""Redis-backed persistent store, shared by every process on the host."""
from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

from chat_sync.application.exceptions import QuotaExceeded, StorageError

logger = logging.getLogger(__name__)


class RedisStore:
    """Implements application.ports.store.PersistentStore.

    Keys are prefixed with ``namespace``. Redis rejects writes with an
    ``OOM`` reply once ``maxmemory`` is reached under a noeviction policy;
    that reply surfaces as QuotaExceeded.
    """

    def __init__(self, redis: aioredis.Redis, namespace: str = "") -> None:
        self._redis = redis
        self._ns = namespace

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(self._ns + key)
        except RedisError as exc:
            raise StorageError(f"redis get {key!r}: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(self._ns + key, value)
        except ResponseError as exc:
            if str(exc).startswith("OOM"):
                raise QuotaExceeded(f"redis set {key!r}: {exc}") from exc
            raise StorageError(f"redis set {key!r}: {exc}") from exc
        except RedisError as exc:
            raise StorageError(f"redis set {key!r}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._ns + key)
        except RedisError as exc:
            raise StorageError(f"redis delete {key!r}: {exc}") from exc

    async def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        try:
            async for raw in self._redis.scan_iter(match=f"{self._ns}{prefix}*"):
                key = raw.decode() if isinstance(raw, bytes) else raw
                found.append(key[len(self._ns):])
        except RedisError as exc:
            raise StorageError(f"redis scan {prefix!r}: {exc}") from exc
        return found

    async def aclose(self) -> None:
        await self._redis.aclose()
        logger.info("Redis store connection closed")


def create_redis_store(url: str, namespace: str) -> RedisStore:
    return RedisStore(aioredis.from_url(url, decode_responses=True), namespace)
