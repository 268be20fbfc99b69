"""
ODDSMITH - Lookup Cache
Redis-backed TTL cache for prediction store lookups.

The cache is an explicit object owned by the caller; nothing here is a
module-level singleton. Redis failures degrade to cache misses so a
lookup always falls through to the store.
"""

import hashlib
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class CachePrefix(str, Enum):
    """Cache key prefixes for organization"""
    PREDICTIONS = "pred"


class PredictionCache:
    """JSON values in Redis, expiring after ``ttl`` seconds"""

    def __init__(self, client: redis.Redis, ttl: int = 60, namespace: str = "oddsmith"):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._client = client
        self.ttl = ttl
        self.namespace = namespace
        self._stats = {
            "hits": 0,
            "misses": 0,
            "errors": 0,
            "sets": 0
        }

    @classmethod
    def from_url(
        cls,
        url: str,
        ttl: int = 60,
        namespace: str = "oddsmith",
        socket_timeout: float = 5.0
    ) -> "PredictionCache":
        client = redis.from_url(
            url,
            socket_timeout=socket_timeout,
            decode_responses=False,
            retry_on_timeout=True
        )
        return cls(client, ttl=ttl, namespace=namespace)

    @staticmethod
    def make_key(prefix: CachePrefix, **params: Any) -> str:
        """Build a stable key from lookup parameters"""
        payload = json.dumps(params, sort_keys=True, default=str)
        digest = hashlib.sha256(payload.encode()).hexdigest()[:16]
        return f"{prefix.value}:{digest}"

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        full_key = self._full_key(key)
        try:
            value = await self._client.get(full_key)
        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Cache get failed for {full_key}: {e}")
            return None

        if value is None:
            self._stats["misses"] += 1
            return None

        try:
            decoded = json.loads(value)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._stats["errors"] += 1
            logger.warning(f"Discarding unreadable cache entry {full_key}: {e}")
            return None

        self._stats["hits"] += 1
        return decoded

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        full_key = self._full_key(key)
        serialized = json.dumps(value, default=str).encode("utf-8")
        try:
            await self._client.setex(full_key, ttl or self.ttl, serialized)
        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Cache set failed for {full_key}: {e}")
            return False

        self._stats["sets"] += 1
        return True

    async def close(self) -> None:
        logger.info("Closing Redis connection...")
        await self._client.aclose()

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)
