import os

import redis
from fiber.logging_utils import get_logger

from db.kv_store import KeyValueStore

logger = get_logger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store. Expiry is native; pipelines run as MULTI/EXEC.

    Connection configured via REDIS_URL (default: redis://localhost:6379).
    """

    def __init__(self, redis_url=None, client=None):
        url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")
        self._client = client or redis.Redis.from_url(url, decode_responses=True)
        try:
            self._client.ping()
        except redis.ConnectionError:
            logger.warning("Redis connection failed at init - will retry on use")

    def get(self, name):
        return self._client.get(name)

    def set(self, name, value, ex=None):
        return bool(self._client.set(name, value, ex=ex))

    def delete(self, *names):
        if not names:
            return 0
        return self._client.delete(*names)

    def keys(self, pattern="*"):
        # SCAN instead of KEYS so large keyspaces do not block the server
        return list(self._client.scan_iter(match=pattern, count=500))

    def expire(self, name, time):
        return bool(self._client.expire(name, time))

    def ttl(self, name):
        return self._client.ttl(name)

    def zadd(self, name, mapping):
        return self._client.zadd(name, mapping)

    def zrange(self, name, start, end, withscores=False):
        return self._client.zrange(name, start, end, withscores=withscores)

    def zrangebyscore(self, name, min, max, withscores=False):
        return self._client.zrangebyscore(name, min, max, withscores=withscores)

    def zremrangebyscore(self, name, min, max):
        return self._client.zremrangebyscore(name, min, max)

    def zcard(self, name):
        return self._client.zcard(name)

    def pipeline(self):
        return self._client.pipeline(transaction=True)

    def close(self):
        self._client.close()
