# meeting_triage/services/redis_client.py
"""
Redis client used for the job ticker lease.

Several worker replicas may run the ticker; the lease lets only one of them
run a cycle at a time. Redis is optional: without REDIS_URL, or while Redis is
unreachable, the lease is always granted and the per-job claim keeps execution
exactly-once.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from meeting_triage.config import settings
from meeting_triage.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Delete the key only if we still own it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LeaseRedisClient:
    """Pooled Redis connection with lease helpers."""

    def __init__(self, url: str | None = None):
        self.url = url if url is not None else settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def initialize(self) -> None:
        """Initialize connection pool on startup."""
        if not self.enabled:
            logger.info("REDIS_URL not set, ticker lease disabled")
            return
        if self._initialized:
            return

        try:
            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=10,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
            self._initialized = True
            logger.info("Redis client initialized")
        except redis.RedisError as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
        if self.pool:
            await self.pool.disconnect()
        self._initialized = False
        logger.info("Redis client closed")

    async def ping(self) -> bool:
        if not self._initialized:
            return False
        try:
            return bool(await self.client.ping())
        except redis.RedisError as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def acquire_lease(self, name: str, holder: str, ttl_s: int) -> bool:
        """
        Try to take the named lease for ``ttl_s`` seconds.

        Returns:
            bool: True when this holder owns the lease (or Redis is not in use)
        """
        if not self.enabled:
            return True
        try:
            if not self._initialized:
                await self.initialize()
            return bool(await self.client.set(f"lease:{name}", holder, nx=True, ex=ttl_s))
        except (redis.RedisError, RuntimeError) as e:
            logger.warning("Redis lease unavailable, proceeding without it", lease=name, error=str(e))
            return True

    async def release_lease(self, name: str, holder: str) -> None:
        if not self.enabled or not self._initialized:
            return
        try:
            await self.client.eval(_RELEASE_SCRIPT, 1, f"lease:{name}", holder)
        except redis.RedisError as e:
            logger.warning("Failed to release Redis lease", lease=name, error=str(e))


# Global instance
redis_client = LeaseRedisClient()
