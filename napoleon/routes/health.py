"""
Liveness and readiness endpoints.

/readyz fails when the database pool is unhealthy, when Redis is required
by the batch rate limiter and unreachable, or when required configuration
is missing. A missing OpenAI key is reported but never fails readiness:
every AI step has a keyword fallback.
"""

import time

from fastapi import APIRouter

from napoleon.config import settings
from napoleon.db.pool import db_health_check
from napoleon.services.redis_client import fast_redis

router = APIRouter(tags=["health"])

POOL_FIELDS = ("pool_size", "pool_available", "pool_utilization_percent")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


async def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db_health = await db_health_check()
    except Exception as e:
        return {"ok": False, "error": f"{type(e).__name__}: {e}", "latency_ms": _elapsed_ms(started)}

    check = {"ok": bool(db_health.get("healthy", False)), "latency_ms": _elapsed_ms(started)}
    pool_stats = db_health.get("pool_stats") or {}
    check.update({field: pool_stats.get(field, 0) for field in POOL_FIELDS if pool_stats})
    if not check["ok"]:
        check["error"] = db_health.get("error", "Database unhealthy")
    return check


async def _redis_check() -> dict:
    started = time.perf_counter()
    try:
        ok = bool(await fast_redis.ping())
    except Exception as e:
        return {"ok": False, "error": f"{type(e).__name__}: {e}"}
    return {"ok": ok, "latency_ms": _elapsed_ms(started)}


def _configuration_check() -> dict:
    issues = []
    if not settings.SUPABASE_DB_URL:
        issues.append("SUPABASE_DB_URL not set")
    if settings.redis_required() and not settings.redis_configured():
        issues.append("UPSTASH_REDIS_REST_URL/TOKEN not set")

    return {
        "ok": not issues,
        "issues": issues or None,
        "environment": settings.environment,
        "llm_configured": bool(settings.OPENAI_API_KEY),
        "rate_limit_backend": settings.BATCH_RATE_LIMIT_BACKEND,
    }


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "napoleon-ai"}


@router.get("/readyz")
async def readyz():
    checks = {"database": await _database_check()}
    if settings.redis_required():
        checks["redis"] = await _redis_check()
    checks["configuration"] = _configuration_check()

    return {
        "overall_ok": all(check["ok"] for check in checks.values()),
        "checks": checks,
        "timestamp": time.time(),
    }


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
