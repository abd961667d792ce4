"""
Batch processing rate limits.
"""

from .rate_limiter import (
    BatchRateLimiter,
    InMemoryBatchRateLimiter,
    RedisBatchRateLimiter,
    build_batch_rate_limiter,
)

__all__ = [
    "BatchRateLimiter",
    "InMemoryBatchRateLimiter",
    "RedisBatchRateLimiter",
    "build_batch_rate_limiter",
]
