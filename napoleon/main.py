"""
Napoleon AI API - application entrypoint.

The lifespan opens the database pool, Redis (only for the shared batch
rate limiter) and the webhook HTTP client, builds the services once and
releases everything in reverse order on shutdown or failed startup.
"""

import time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from napoleon.config import settings
from napoleon.db.pool import db_pool
from napoleon.dependencies import build_services
from napoleon.infrastructure.observability.logging import get_logger, log_request, setup_logging
from napoleon.routes import ai, delegation, health, notifications, vip
from napoleon.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


async def _close_resources(resources: list) -> list[str]:
    """Close started resources in reverse order; returns the errors seen."""
    errors = []
    for name, close in reversed(resources):
        try:
            logger.info("Closing resource", resource=name)
            await close()
        except Exception as e:
            logger.error("Error closing resource", resource=name, error=str(e))
            errors.append(f"{name}: {e}")
    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Application starting",
        environment=settings.environment,
        rate_limit_backend=settings.BATCH_RATE_LIMIT_BACKEND,
        llm_configured=bool(settings.OPENAI_API_KEY),
    )

    # (name, async close) for everything opened so far
    resources = []

    try:
        await db_pool.initialize()
        resources.append(("database_pool", db_pool.close))

        if settings.redis_required():
            await fast_redis.initialize()
            resources.append(("redis", fast_redis.close))

        http_client = httpx.AsyncClient(timeout=settings.NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS)
        resources.append(("http_client", http_client.aclose))

        app.state.services = build_services(http_client)
    except Exception as e:
        logger.error(
            "Failed to initialize services",
            error=str(e),
            completed_tasks=[name for name, _ in resources],
        )
        await _close_resources(resources)
        raise

    logger.info("All services initialized successfully", services=[name for name, _ in resources])

    yield

    logger.info("Application shutting down")
    errors = await _close_resources(resources)
    if errors:
        logger.warning("Some services had shutdown errors", errors=errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Napoleon AI",
    description="Executive message prioritization, smart notifications and delegation",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(ai.router)
app.include_router(notifications.router)
app.include_router(delegation.router)
app.include_router(vip.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start_time) * 1000

    log_request(request.method, request.url.path, response.status_code, round(duration_ms, 2))
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("napoleon.main:app", host="0.0.0.0", port=8000)
