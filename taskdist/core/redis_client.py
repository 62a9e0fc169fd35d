"""Optional Redis backend for scheduler job history."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from taskdist.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisClient:
    """Async Redis wrapper that degrades to no-ops when Redis is not configured or failing.

    Every command returns a neutral value (None/False) on error instead of raising;
    callers treat Redis as best-effort storage.
    """

    def __init__(self, url: str | None = None) -> None:
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        self._url = url if url is not None else settings.redis_url
        self._enabled = bool(self._url)

        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        if self._enabled and self._url:
            try:
                self._pool = ConnectionPool.from_url(
                    self._url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized", extra={"redis_url": self._url})
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis client: %s. Job history kept in memory.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Job history kept in memory.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is configured and initialized."""
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Summarize Redis usage for the health endpoint."""
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
        }

    async def _run(self, command: str, key: str, call: Callable[[Redis], Awaitable[T]], default: T) -> T:
        """Execute one Redis command, recording health and swallowing RedisError."""
        if not self.is_available or self._client is None:
            return default

        self._total_operations += 1
        try:
            result = await call(self._client)
        except RedisError as e:
            self._failure_count += 1
            logger.warning("Redis %s error for key %s: %s", command, key, e)
            return default

        self._last_successful_operation = datetime.now(UTC)
        return result

    async def get(self, key: str) -> str | None:
        """Get a value, or None if missing or Redis is unavailable."""
        return await self._run("GET", key, lambda client: client.get(key), None)

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set a value with a TTL."""

        async def _set(client: Redis) -> bool:
            await client.setex(key, ttl_seconds, value)
            return True

        return await self._run("SET", key, _set, False)

    async def delete(self, *keys: str) -> bool:
        """Delete one or more keys."""
        if not keys:
            return False

        async def _delete(client: Redis) -> bool:
            await client.delete(*keys)
            return True

        return await self._run("DELETE", ",".join(keys), _delete, False)

    async def increment(self, key: str) -> int | None:
        """Atomically increment a counter, returning its new value."""
        return await self._run("INCR", key, lambda client: client.incr(key), None)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set a TTL on an existing key."""

        async def _expire(client: Redis) -> bool:
            await client.expire(key, ttl_seconds)
            return True

        return await self._run("EXPIRE", key, _expire, False)

    async def ping(self) -> bool:
        """Check that Redis responds."""

        async def _ping(client: Redis) -> bool:
            return bool(await client.ping())  # type: ignore[misc]

        return await self._run("PING", "-", _ping, False)

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()
