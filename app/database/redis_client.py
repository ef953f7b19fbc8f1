import redis
import redis.asyncio as aioredis
from app.config.settings import settings


class RedisClient:
    _client: redis.Redis = None
    _async_client: aioredis.Redis = None

    @classmethod
    def get_client(cls) -> redis.Redis:
        if cls._client is None:
            cls._client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return cls._client

    @classmethod
    def get_async_client(cls) -> aioredis.Redis:
        """Asyncio client for the API process (log relay listener)."""
        if cls._async_client is None:
            cls._async_client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        return cls._async_client

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._async_client = None


def get_redis() -> redis.Redis:
    return RedisClient.get_client()
