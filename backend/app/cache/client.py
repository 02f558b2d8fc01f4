"""Best-effort Redis cache.

The cache is never a source of truth: every Redis failure is logged and
swallowed here, so callers see a miss (reads) or nothing at all (writes and
invalidations).
"""

import json
import logging
from typing import Any

from fastapi import Request
from redis import ConnectionPool, Redis
from redis.exceptions import RedisError

from app.core.config import Settings
from app.core.errors import CacheUnavailable

logger = logging.getLogger(__name__)


class CacheClient:
    def __init__(self, redis: Redis | None = None, default_ttl: int = 300):
        self._redis = redis
        self.default_ttl = default_ttl

    @classmethod
    def from_settings(cls, cfg: Settings) -> "CacheClient":
        if not cfg.CACHE_ENABLED:
            logger.info("Cache disabled by configuration")
            return cls(None, cfg.CACHE_TTL_SECONDS)

        pool = ConnectionPool.from_url(
            cfg.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=cfg.CACHE_SOCKET_TIMEOUT,
            socket_timeout=cfg.CACHE_SOCKET_TIMEOUT,
        )
        return cls(Redis(connection_pool=pool), cfg.CACHE_TTL_SECONDS)

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def _call(self, op: str, key: str, fn):
        try:
            return fn()
        except (RedisError, OSError) as exc:
            logger.warning("Cache %s failed for key=%s: %s", op, key, exc)
            raise CacheUnavailable(f"cache {op} failed") from exc

    def get_json(self, key: str) -> Any | None:
        if not self.enabled:
            return None
        try:
            raw = self._call("get", key, lambda: self._redis.get(key))
        except CacheUnavailable:
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry key=%s", key)
            return None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self.enabled:
            return False
        payload = json.dumps(value, default=str)
        try:
            self._call("set", key, lambda: self._redis.setex(key, ttl or self.default_ttl, payload))
        except CacheUnavailable:
            return False
        return True

    def delete(self, *keys: str) -> bool:
        if not self.enabled or not keys:
            return False
        try:
            self._call("delete", ",".join(keys), lambda: self._redis.delete(*keys))
        except CacheUnavailable:
            return False
        return True

    def ping(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self._call("ping", "-", self._redis.ping))
        except CacheUnavailable:
            return False

    def close(self) -> None:
        if self._redis is None:
            return
        try:
            self._redis.close()
        except RedisError:
            logger.warning("Error closing Redis connection", exc_info=True)


def get_cache(request: Request) -> CacheClient:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        return CacheClient(None)
    return cache
