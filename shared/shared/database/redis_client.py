"""Async client factory for Redis-protocol key/value stores (Redis, Dragonfly)."""
from typing import Any

import redis.asyncio as redis

RedisClient = redis.Redis


def get_redis_client(
    redis_url: str,
    *,
    timeout_seconds: float | None = None,
    **kwargs: Any,
) -> redis.Redis:
    """Build a pooled client. ``timeout_seconds`` bounds both connect and socket I/O."""
    return redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=timeout_seconds,
        socket_connect_timeout=timeout_seconds,
        retry_on_timeout=False,
        health_check_interval=30,
        **kwargs,
    )
