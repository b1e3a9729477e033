from shared.database.redis_client import get_redis_client, RedisClient

__all__ = [
    "get_redis_client",
    "RedisClient",
]
