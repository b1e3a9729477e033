"""
Fast cache — optional Redis-protocol (Dragonfly) front for the rendition cache.

Strictly advisory: no method ever raises. A failed or timed-out ``get`` is a
miss, a failed ``set``/``delete`` returns False. A disabled cache holds no
client and answers every call with its empty result without doing any I/O.

Values are JSON-serialized whole under one key; there are no partial updates.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable
from typing import Any, TypeVar

from redis.exceptions import RedisError

from app.config import Settings
from app.exceptions import FastCacheError
from app.monitoring import MonitoringService
from shared.database.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FastCache:
    def __init__(
        self,
        client: RedisClient | None,
        monitoring: MonitoringService,
        *,
        default_ttl: int = 86400,
        timeout_seconds: float = 0.5,
    ) -> None:
        self._client = client
        self._monitoring = monitoring
        self._default_ttl = default_ttl
        self._timeout = timeout_seconds

    @classmethod
    def disabled(cls, monitoring: MonitoringService) -> FastCache:
        return cls(None, monitoring)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def _run(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise FastCacheError(f"{operation} timed out after {self._timeout}s") from exc
        except (RedisError, OSError) as exc:
            raise FastCacheError(f"{operation} failed: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        if self._client is None:
            return None
        started = time.perf_counter()
        try:
            raw = await self._run(self._client.get(key), "get")
            value = json.loads(raw) if raw is not None else None
        except (FastCacheError, ValueError) as exc:
            logger.warning("Fast cache get failed for %s: %s", key, exc)
            return None
        self._monitoring.record_metric("cache_get", {
            "key": key,
            "hit": value is not None,
            "duration": (time.perf_counter() - started) * 1000,
        })
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if self._client is None:
            return False
        started = time.perf_counter()
        expiry = ttl or self._default_ttl
        try:
            payload = json.dumps(value, separators=(",", ":"))
            await self._run(self._client.set(key, payload, ex=expiry), "set")
        except (FastCacheError, TypeError, ValueError) as exc:
            logger.warning("Fast cache set failed for %s: %s", key, exc)
            return False
        self._monitoring.record_metric("cache_set", {
            "key": key,
            "size": len(payload),
            "ttl": expiry,
            "duration": (time.perf_counter() - started) * 1000,
        })
        return True

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        started = time.perf_counter()
        try:
            await self._run(self._client.delete(key), "delete")
        except FastCacheError as exc:
            logger.warning("Fast cache delete failed for %s: %s", key, exc)
            return False
        self._monitoring.record_metric("cache_delete", {
            "key": key,
            "duration": (time.perf_counter() - started) * 1000,
        })
        return True

    async def clear(self) -> int | None:
        """Flush the whole database. Returns the number of keys removed, None on failure."""
        if self._client is None:
            return None
        try:
            count = await self._run(self._client.dbsize(), "dbsize")
            await self._run(self._client.flushdb(), "flushdb")
        except FastCacheError as exc:
            logger.warning("Fast cache flush failed: %s", exc)
            return None
        logger.info("Fast cache flushed (%d keys)", count)
        return int(count)

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._run(self._client.ping(), "ping"))
        except FastCacheError as exc:
            logger.warning("Fast cache ping failed: %s", exc)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_fast_cache(settings: Settings, monitoring: MonitoringService) -> FastCache:
    if not settings.dragonfly_enabled:
        logger.info("Dragonfly caching is disabled")
        return FastCache.disabled(monitoring)
    client = get_redis_client(
        settings.dragonfly_url, timeout_seconds=settings.fast_cache_timeout_seconds,
    )
    logger.info("Dragonfly cache at %s:%d", settings.dragonfly_host, settings.dragonfly_port)
    return FastCache(
        client,
        monitoring,
        default_ttl=settings.dragonfly_cache_ttl,
        timeout_seconds=settings.fast_cache_timeout_seconds,
    )
