"""
Redis client for the shared event queue
"""
import redis
from typing import Optional

from geofine.core import config


class RedisClient:
    """Redis connection manager"""
    _instance = None
    _client = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            self._client = redis.Redis(
                host=config.REDIS_HOST,
                port=config.REDIS_PORT,
                db=0,
                decode_responses=True,
                socket_timeout=config.QUEUE_SUBMIT_TIMEOUT + 5,
            )

    # Event queue methods
    def queue_length(self, key: str) -> int:
        """Number of raw event ids waiting in the queue"""
        return self._client.llen(key)

    def push_event(self, key: str, raw_event_id: int) -> int:
        """Append a raw event id; returns the new queue length"""
        return self._client.lpush(key, raw_event_id)

    def pop_event(self, key: str, timeout: int = 5) -> Optional[int]:
        """Block up to `timeout` seconds for the oldest raw event id"""
        item = self._client.brpop(key, timeout=timeout)
        if not item:
            return None
        _, value = item
        return int(value)


def get_redis_client() -> RedisClient:
    """Global instance, created on first use"""
    return RedisClient()
