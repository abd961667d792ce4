"""
Batch Rate Limiter - sliding window limit on batch processing requests.

Each user may start BATCH_MAX_PER_HOUR batches within any rolling
BATCH_WINDOW_SECONDS window. Two interchangeable backends:

- InMemoryBatchRateLimiter: per-process timestamp lists guarded by an
  asyncio.Lock. The default; correct for a single worker.
- RedisBatchRateLimiter: Redis sorted sets updated by atomic Lua scripts,
  shared by every worker. Fails open when Redis is unavailable.

Usage:
    limiter = build_batch_rate_limiter()

    if not await limiter.try_acquire(user_id):
        return BatchResult(processed=0, failed=0, rate_limited=True)
"""

import asyncio
import time
from collections.abc import Callable

from napoleon.config import settings
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


class InMemoryBatchRateLimiter:
    def __init__(
        self,
        max_batches: int | None = None,
        window_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_batches = max_batches or settings.BATCH_MAX_PER_HOUR
        self.window_seconds = window_seconds or settings.BATCH_WINDOW_SECONDS
        self._clock = clock
        self._requests: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    def _prune(self, user_id: str, now: float) -> list[float]:
        window_start = now - self.window_seconds
        recent = [ts for ts in self._requests.get(user_id, []) if ts > window_start]
        if recent:
            self._requests[user_id] = recent
        else:
            self._requests.pop(user_id, None)
        return recent

    async def check_rate_limit(self, user_id: str) -> bool:
        """True if the user may start another batch right now."""
        async with self._lock:
            return len(self._prune(user_id, self._clock())) < self.max_batches

    async def record_batch_request(self, user_id: str) -> None:
        async with self._lock:
            now = self._clock()
            self._prune(user_id, now)
            self._requests.setdefault(user_id, []).append(now)

    async def try_acquire(self, user_id: str) -> bool:
        """Check and record in one step so concurrent requests cannot overshoot."""
        async with self._lock:
            now = self._clock()
            recent = self._prune(user_id, now)
            if len(recent) >= self.max_batches:
                return False
            self._requests.setdefault(user_id, []).append(now)
            return True

    async def remaining(self, user_id: str) -> int:
        async with self._lock:
            return max(0, self.max_batches - len(self._prune(user_id, self._clock())))

    async def retry_after(self, user_id: str) -> int:
        """Seconds until the oldest batch in the window expires (0 if not limited)."""
        async with self._lock:
            now = self._clock()
            recent = self._prune(user_id, now)
            if len(recent) < self.max_batches:
                return 0
            return max(1, int(min(recent) + self.window_seconds - now) + 1)


class RedisBatchRateLimiter:
    """
    Redis-backed batch rate limiter using sorted sets.

    Thread Safety:
        Every read-modify-write happens inside a single Lua script.
    """

    # Returns: {allowed (0 or 1), current_count, oldest_timestamp or 0}
    ACQUIRE_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_seconds = tonumber(ARGV[2])
    local current_time = tonumber(ARGV[3])
    local unique_id = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, 0, current_time - window_seconds)

    local current_count = redis.call('ZCARD', key)
    if current_count >= limit then
        local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local oldest_timestamp = 0
        if #oldest_entries > 0 then
            oldest_timestamp = tonumber(oldest_entries[2])
        end
        return {0, current_count, oldest_timestamp}
    end

    redis.call('ZADD', key, current_time, unique_id)
    redis.call('EXPIRE', key, window_seconds * 2)
    return {1, current_count + 1, 0}
    """

    # Returns: {current_count, oldest_timestamp or 0}
    COUNT_LUA_SCRIPT = """
    local key = KEYS[1]
    local window_seconds = tonumber(ARGV[1])
    local current_time = tonumber(ARGV[2])

    redis.call('ZREMRANGEBYSCORE', key, 0, current_time - window_seconds)

    local current_count = redis.call('ZCARD', key)
    local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local oldest_timestamp = 0
    if #oldest_entries > 0 then
        oldest_timestamp = tonumber(oldest_entries[2])
    end
    return {current_count, oldest_timestamp}
    """

    RECORD_LUA_SCRIPT = """
    local key = KEYS[1]
    local window_seconds = tonumber(ARGV[1])
    local current_time = tonumber(ARGV[2])
    local unique_id = ARGV[3]

    redis.call('ZADD', key, current_time, unique_id)
    redis.call('EXPIRE', key, window_seconds * 2)
    return 1
    """

    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        max_batches: int | None = None,
        window_seconds: int | None = None,
        fail_open: bool | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client or fast_redis
        self.max_batches = max_batches or settings.BATCH_MAX_PER_HOUR
        self.window_seconds = window_seconds or settings.BATCH_WINDOW_SECONDS
        self.fail_open = settings.BATCH_RATE_LIMIT_FAIL_OPEN if fail_open is None else fail_open
        self._clock = clock

    @staticmethod
    def _key(user_id: str) -> str:
        return f"ratelimit:batch:{user_id}"

    @staticmethod
    def _unique_id(now: float) -> str:
        return f"{now}:{time.time_ns()}"

    async def _count(self, user_id: str) -> tuple[int, float]:
        now = self._clock()
        result = await self.redis.eval(
            self.COUNT_LUA_SCRIPT, [self._key(user_id)], [self.window_seconds, now]
        )
        return int(result[0]), float(result[1] or 0)

    async def check_rate_limit(self, user_id: str) -> bool:
        try:
            count, _ = await self._count(user_id)
            return count < self.max_batches
        except Exception as e:
            return self._on_error("check_rate_limit", user_id, e)

    async def record_batch_request(self, user_id: str) -> None:
        now = self._clock()
        try:
            await self.redis.eval(
                self.RECORD_LUA_SCRIPT,
                [self._key(user_id)],
                [self.window_seconds, now, self._unique_id(now)],
            )
        except Exception as e:
            logger.error(
                "Batch rate limiter Redis error",
                operation="record_batch_request",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def try_acquire(self, user_id: str) -> bool:
        now = self._clock()
        try:
            result = await self.redis.eval(
                self.ACQUIRE_LUA_SCRIPT,
                [self._key(user_id)],
                [self.max_batches, self.window_seconds, now, self._unique_id(now)],
            )
            return bool(int(result[0]))
        except Exception as e:
            return self._on_error("try_acquire", user_id, e)

    async def remaining(self, user_id: str) -> int:
        try:
            count, _ = await self._count(user_id)
            return max(0, self.max_batches - count)
        except Exception as e:
            return self.max_batches if self._on_error("remaining", user_id, e) else 0

    async def retry_after(self, user_id: str) -> int:
        try:
            count, oldest = await self._count(user_id)
        except Exception as e:
            self._on_error("retry_after", user_id, e)
            return 0 if self.fail_open else self.window_seconds

        if count < self.max_batches:
            return 0
        if oldest <= 0:
            return self.window_seconds
        return max(1, int(oldest + self.window_seconds - self._clock()) + 1)

    def _on_error(self, operation: str, user_id: str, error: Exception) -> bool:
        logger.error(
            "Batch rate limiter Redis error",
            operation=operation,
            user_id=user_id,
            fail_open=self.fail_open,
            error=str(error),
            error_type=type(error).__name__,
        )
        return self.fail_open


BatchRateLimiter = InMemoryBatchRateLimiter | RedisBatchRateLimiter


def build_batch_rate_limiter(backend: str | None = None) -> BatchRateLimiter:
    backend = (backend or settings.BATCH_RATE_LIMIT_BACKEND).lower()
    if backend == "redis":
        return RedisBatchRateLimiter()
    if backend != "memory":
        logger.warning("Unknown batch rate limit backend, using memory", backend=backend)
    return InMemoryBatchRateLimiter()
