import redis.asyncio as redis
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, runtime_checkable
import json
import logging
import uuid

from app.core.config import settings

logger = logging.getLogger(__name__)


class UUIDEncoder(json.JSONEncoder):
    """JSON encoder that handles UUID and datetime objects"""
    def default(self, obj):
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


@runtime_checkable
class SupportsPatternInvalidation(Protocol):
    """Cache backends able to drop every key matching a glob pattern"""

    async def remove_by_pattern(self, pattern: str) -> int:
        ...


class CacheStatistics:
    """Hit/miss/error counters kept in process memory"""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.operations: Counter = Counter()
        self.reset_at = datetime.now(timezone.utc)

    def record(self, operation: str) -> None:
        self.operations[operation] += 1

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total, 4) if total else 0.0

    def as_dict(self) -> Dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_ratio": self.hit_ratio,
            "operations": dict(self.operations),
            "reset_at": self.reset_at,
        }


class RedisClient:
    def __init__(self, url: Optional[str] = None):
        self.url = url
        self.redis: Optional[redis.Redis] = None
        self.stats = CacheStatistics()

    async def connect(self):
        """Connect to Redis"""
        self.redis = redis.from_url(
            self.url or settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    @property
    def is_connected(self) -> bool:
        return self.redis is not None

    async def ping(self) -> bool:
        if not self.redis:
            return False
        return await self.redis.ping()

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis"""
        if not self.redis:
            return None
        self.stats.record("get")
        try:
            value = await self.redis.get(key)
        except redis.RedisError as e:
            self.stats.errors += 1
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if value is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
        return value

    async def set(self, key: str, value: str, expire: Optional[int] = None) -> bool:
        """Set value in Redis with expiration"""
        if not self.redis:
            return False
        self.stats.record("set")
        try:
            return bool(await self.redis.set(key, value, ex=expire or settings.CACHE_DEFAULT_EXPIRE_SECONDS))
        except redis.RedisError as e:
            self.stats.errors += 1
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    async def getdel(self, key: str) -> Optional[str]:
        """Atomically read and remove a key"""
        if not self.redis:
            return None
        self.stats.record("getdel")
        return await self.redis.getdel(key)

    async def delete(self, *keys: str) -> int:
        """Delete keys from Redis, returns the number removed"""
        if not self.redis or not keys:
            return 0
        self.stats.record("delete")
        try:
            return await self.redis.delete(*keys)
        except redis.RedisError as e:
            self.stats.errors += 1
            logger.warning(f"Cache delete failed for {keys}: {e}")
            return 0

    async def exists(self, key: str) -> bool:
        """Check if key exists in Redis"""
        if not self.redis:
            return False
        return await self.redis.exists(key) > 0

    async def keys(self, pattern: str = "*", limit: int = 1000) -> List[str]:
        """List keys matching a pattern using SCAN"""
        if not self.redis:
            return []
        self.stats.record("keys")
        found = []
        async for key in self.redis.scan_iter(match=pattern, count=500):
            found.append(key)
            if len(found) >= limit:
                break
        return found

    async def remove_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern"""
        if not self.redis:
            return 0
        self.stats.record("remove_by_pattern")
        removed = 0
        batch = []
        async for key in self.redis.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += await self.redis.delete(*batch)
                batch = []
        if batch:
            removed += await self.redis.delete(*batch)
        return removed

    async def get_json(self, key: str) -> Optional[dict]:
        """Get JSON value from Redis"""
        value = await self.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return None

    async def set_json(self, key: str, value, expire: Optional[int] = None) -> bool:
        """Set JSON value in Redis"""
        try:
            json_str = json.dumps(value, cls=UUIDEncoder)
        except (TypeError, ValueError):
            return False
        return await self.set(key, json_str, expire)


# Global Redis client instance
redis_client = RedisClient()
# Download tokens, kept apart from the cache keyspace
token_store = RedisClient(settings.DOWNLOAD_TOKEN_REDIS_URL)


async def get_redis() -> RedisClient:
    """Dependency to get Redis client"""
    return redis_client
