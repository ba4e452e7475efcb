"""Best-effort cache for read-heavy endpoints.

The cache is an accelerator only: a miss, an expired entry or an unreachable
redis all degrade to reading the database.
"""

import time
from typing import Dict, Optional, Tuple

import redis
import structlog

from config import Settings

logger = structlog.get_logger(__name__)


class MemoryBackend:
    def __init__(self):
        self._entries: Dict[str, Tuple[float, str]] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (time.monotonic() + ttl, value)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class RedisBackend:
    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.setex(key, ttl, value)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def clear(self) -> None:
        self.client.flushdb()


class Cache:
    """Key/value cache with a per-entry TTL.

    Writes go to the primary backend; when it raises, the operation is
    replayed against an in-memory fallback so callers never see cache errors.
    """

    def __init__(self, backend=None, default_ttl: int = 300):
        self.fallback = MemoryBackend()
        self.backend = backend or self.fallback
        self.default_ttl = default_ttl

    def _run(self, op: str, *args):
        if self.backend is not self.fallback:
            try:
                return getattr(self.backend, op)(*args)
            except redis.RedisError as exc:
                logger.warning("Cache backend unavailable, using memory", op=op, error=str(exc))
        return getattr(self.fallback, op)(*args)

    def get(self, key: str) -> Optional[str]:
        return self._run("get", key)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._run("set", key, value, ttl or self.default_ttl)

    def delete(self, key: str) -> None:
        self._run("delete", key)
        if self.backend is not self.fallback:
            self.fallback.delete(key)

    def clear(self) -> None:
        self._run("clear")


def build_cache(settings: Settings) -> Cache:
    if not settings.redis_enabled:
        return Cache(default_ttl=settings.product_cache_ttl)
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        decode_responses=True,
        socket_connect_timeout=1,
        socket_timeout=1,
    )
    logger.info("Using redis cache", host=settings.redis_host, port=settings.redis_port)
    return Cache(RedisBackend(client), default_ttl=settings.product_cache_ttl)
