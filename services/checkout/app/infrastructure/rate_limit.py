"""Fixed-window request limiter for checkout endpoints.

Counters live in Redis when it is reachable, otherwise in a per-process
TTL cache (good enough for a single replica or local runs).
"""
from threading import Lock
from typing import Optional
import time

import redis
from cachetools import TTLCache

from shared.core import get_logger

logger = get_logger(__name__)

class RateLimiter:
    def __init__(self, limit: int, window_seconds: int, redis_url: Optional[str] = None, prefix: str = "ratelimit"):
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self.redis_client: Optional[redis.Redis] = None
        self.local_counts: TTLCache = TTLCache(maxsize=10000, ttl=window_seconds)
        self._lock = Lock()
        if redis_url:
            try:
                self.redis_client = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1)
                self.redis_client.ping()
            except redis.RedisError as e:
                logger.warning(f"Rate limiter falling back to local counters: {e}")
                self.redis_client = None

    def _window_key(self, identifier: str) -> str:
        window = int(time.time() // self.window_seconds)
        return f"{self.prefix}:{identifier}:{window}"

    def _hit_redis(self, key: str) -> Optional[int]:
        try:
            pipe = self.redis_client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window_seconds)
            count, _ = pipe.execute()
            return int(count)
        except redis.RedisError as e:
            logger.warning(f"Redis rate limit check failed, using local counter: {e}")
            return None

    def _hit_local(self, key: str) -> int:
        with self._lock:
            count = self.local_counts.get(key, 0) + 1
            self.local_counts[key] = count
            return count

    def hit(self, identifier: str) -> bool:
        """Count one request; True while the caller is within its limit."""
        key = self._window_key(identifier)
        count = self._hit_redis(key) if self.redis_client else None
        if count is None:
            count = self._hit_local(key)
        return count <= self.limit
