"""
RequestGuard: Key-Value Store
===============================

What:  The shared store holding rate-limit counters and suppression flags.
How:   A small async protocol with two implementations:
       - MemoryStore: per-process dict with expiries (single worker, tests)
       - RedisStore:  redis.asyncio client, shared across workers/instances
Who:   Used by RateLimiter; selected by create_store() from settings.

Concurrency:
    Correctness under concurrent requests from the same IP relies on the
    store's own atomicity (Redis INCRBY / SET NX). MemoryStore runs on a
    single event loop and never awaits between read and write, so each
    operation is atomic there too.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis

from requestguard.config import Settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Async key-value operations needed by the rate limiter."""

    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def has(self, key: str) -> bool:
        ...

    async def put(self, key: str, value: Any, ttl: int) -> None:
        ...

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        """Store value only if the key is absent. Returns True when stored."""
        ...

    async def increment(self, key: str, amount: int = 1) -> int:
        ...

    async def forget(self, key: str) -> None:
        ...

    async def close(self) -> None:
        """Release connections; called once at application shutdown."""
        ...


class MemoryStore:
    """
    In-process store with per-key expiry.

    Expired keys are dropped lazily on access. `clock` is injectable so tests
    can move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # key → (value, expires_at or None)
        self._items: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        item = self._items.get(key)
        if item is None:
            return None
        _, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._items[key]
            return None
        return item

    async def get(self, key: str, default: Any = None) -> Any:
        item = self._live(key)
        return default if item is None else item[0]

    async def has(self, key: str) -> bool:
        return self._live(key) is not None

    async def put(self, key: str, value: Any, ttl: int) -> None:
        self._items[key] = (value, self._clock() + ttl)

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        if self._live(key) is not None:
            return False
        self._items[key] = (value, self._clock() + ttl)
        return True

    async def increment(self, key: str, amount: int = 1) -> int:
        item = self._live(key)
        if item is None:
            # Same as Redis INCRBY on a missing key: starts at 0, no expiry
            value, expires_at = 0, None
        else:
            value, expires_at = item
        value = int(value) + amount
        self._items[key] = (value, expires_at)
        return value

    async def forget(self, key: str) -> None:
        self._items.pop(key, None)

    async def close(self) -> None:
        pass

    def clear(self) -> None:
        self._items.clear()


class RedisStore:
    """
    Redis implementation of KeyValueStore.

    Values are stored as strings; integers round-trip through int() in
    RateLimiter. All operations are single Redis commands (atomic).
    """

    def __init__(self, redis_client: Redis, prefix: str = ""):
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self._redis.get(self._key(key))
        if value is None:
            return default
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def has(self, key: str) -> bool:
        return bool(await self._redis.exists(self._key(key)))

    async def put(self, key: str, value: Any, ttl: int) -> None:
        await self._redis.set(self._key(key), _encode(value), ex=ttl)

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        return bool(await self._redis.set(self._key(key), _encode(value), ex=ttl, nx=True))

    async def increment(self, key: str, amount: int = 1) -> int:
        return int(await self._redis.incrby(self._key(key), amount))

    async def forget(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def close(self) -> None:
        await self._redis.aclose()


def _encode(value: Any) -> Any:
    # Redis only accepts bytes, str, int and float
    if isinstance(value, bool):
        return int(value)
    return value


def create_store(settings: Settings) -> KeyValueStore:
    """Redis when REDIS_URL is configured, in-process memory otherwise."""
    if settings.redis_url:
        logger.info("Using Redis key-value store")
        return RedisStore(Redis.from_url(settings.redis_url))
    logger.warning(
        "REDIS_URL not set: rate limiting state is per-process and not shared between workers"
    )
    return MemoryStore()
