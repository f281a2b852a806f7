"""
Key-value cache tiers.

``RedisCache`` is the shared (distributed) tier; ``MemoryCache`` is the
per-process tier. Both expose the same async get/set/delete interface.
"""
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class MemoryCache:
    """In-process cache with optional per-entry expiry."""

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            default_ttl: Seconds an entry lives when ``set`` gives no ttl (None = forever)
            clock: Monotonic time source (injectable for tests)
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = ttl if ttl is not None else self.default_ttl
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def items(self) -> List[Tuple[str, Any]]:
        """Live (key, value) pairs in insertion order."""
        live = []
        for key, (value, expires_at) in list(self._entries.items()):
            if self._expired(expires_at):
                del self._entries[key]
            else:
                live.append((key, value))
        return live

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """
    JSON-valued cache on Redis.

    Connection or protocol errors are logged and reported as misses so a
    cache outage never fails a scrape.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", client: Optional[Any] = None):
        """
        Args:
            url: Redis connection URL
            client: Pre-built ``redis.asyncio`` client (overrides url)
        """
        self.client = client if client is not None else redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"⚠️  Cache get failed for {key}: {e}")
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"⚠️  Discarding unreadable cache entry {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value, default=str)
            await self.client.set(key, payload, ex=ttl)
            return True
        except (RedisError, OSError, TypeError) as e:
            logger.warning(f"⚠️  Cache set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self.client.delete(key)
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"⚠️  Cache delete failed for {key}: {e}")
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.error(f"❌ Redis unreachable: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection closed")
