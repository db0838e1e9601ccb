from typing import Optional
import asyncio
import redis.asyncio as redis


class RedisClient:
    _instance: Optional[redis.Redis] = None

    _loop_id: Optional[int] = None

    @classmethod
    def get_instance(cls) -> redis.Redis:
        try:
            current_loop_id = id(asyncio.get_running_loop())
        except RuntimeError:
            current_loop_id = None

        if cls._instance and cls._loop_id != current_loop_id:
            # Loop changed: reset the pool instead of closing on a dead loop
            old_instance = cls._instance
            cls._instance = None
            cls._loop_id = None
            old_instance.connection_pool.reset()

        if cls._instance is None:
            from authz_records.core.config import settings
            cls._instance = redis.from_url(settings.REDIS_URL, decode_responses=True)
            cls._loop_id = current_loop_id

        return cls._instance

    @classmethod
    async def close(cls):
        if cls._instance:
            await cls._instance.aclose()
            cls._instance = None
            cls._loop_id = None
