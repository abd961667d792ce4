"""
Async Redis client for the shared batch rate limiter.

Only opened when BATCH_RATE_LIMIT_BACKEND is "redis". Upstash exposes a
REST URL and token; the native protocol endpoint is derived from them.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from napoleon.config import settings
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def upstash_native_url(rest_url: str | None, token: str | None) -> str:
    """https://redis-12345.upstash.io + token -> rediss://default:<token>@redis-12345.upstash.io:6379"""
    if not rest_url or not token:
        raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN are required")

    host = rest_url.split("://", 1)[-1].strip("/")
    return f"rediss://default:{token}@{host}:6379"


class FastRedisClient:
    def __init__(self, max_connections: int | None = None):
        self.max_connections = max_connections or settings.REDIS_MAX_CONNECTIONS
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return

        try:
            self.pool = ConnectionPool.from_url(
                upstash_native_url(settings.UPSTASH_REDIS_REST_URL, settings.UPSTASH_REDIS_REST_TOKEN),
                max_connections=self.max_connections,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info("Redis client initialized", max_connections=self.max_connections)

    async def close(self) -> None:
        try:
            if self.client is not None:
                await self.client.aclose()
            if self.pool is not None:
                await self.pool.disconnect()
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._initialized = False

    async def ping(self) -> bool:
        if not self._initialized:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def eval(self, script: str, keys: list[str], args: list) -> list:
        """Run a Lua script atomically. Raises ConnectionError when not initialized."""
        if not self._initialized:
            raise ConnectionError("Redis client not available")
        return await self.client.eval(script, len(keys), *keys, *args)


fast_redis = FastRedisClient()
