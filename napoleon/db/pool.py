"""
PostgreSQL connection pool for the message store (Supabase Postgres).

One AsyncConnectionPool per process, opened by the FastAPI lifespan and
shared by every feature repository through napoleon.db.helpers.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from napoleon.config import settings
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# /readyz reports the pool unhealthy past these
MAX_HEALTHY_UTILIZATION = 90.0
MAX_HEALTHY_LATENCY_MS = 100.0


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        """Open the pool and prove one connection works."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        pool_config = settings.get_db_pool_config()
        try:
            self.pool = AsyncConnectionPool(
                conninfo=settings.SUPABASE_DB_URL,
                open=False,
                check=AsyncConnectionPool.check_connection,
                configure=self._configure_connection,
                **pool_config,
            )
            await self.pool.open()
            await self.pool.wait()

            # connection() refuses to hand out connections until this is set
            self._initialized = True
            await self._select_one()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            if self.pool is not None:
                try:
                    await self.pool.close()
                except Exception as close_error:
                    logger.warning("Error closing half-open pool", error=str(close_error))
                self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
            timeout=pool_config["timeout"],
        )

    @staticmethod
    async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        # Autocommit so idle connections never sit in INTRANS
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"napoleon-ai-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(
                sql.Literal(f"{settings.DB_STATEMENT_TIMEOUT_SECONDS}s")
            )
        )

    async def _select_one(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database connection test returned an unexpected result")

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        try:
            if self.pool is not None:
                await asyncio.wait_for(self.pool.close(), timeout=30.0)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if self._closed:
            raise RuntimeError("Database pool is closed")
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Connection with commit on success, rollback on exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        """
        Pool statistics plus the latency of a round trip.

        Unhealthy when the pool is not open, utilization exceeds 90% or
        SELECT 1 takes longer than 100 ms.
        """
        if not self.initialized:
            reason = "Pool is closed" if self._closed else "Pool not initialized"
            return {"healthy": False, "error": reason, "service": "database_pool"}

        try:
            stats = self.pool.get_stats()
            pool_size = stats.get("pool_size", 0)
            pool_available = stats.get("pool_available", 0)
            requests_waiting = stats.get("requests_waiting", 0)
            utilization = (pool_size - pool_available) / pool_size * 100 if pool_size else 0.0

            started = time.perf_counter()
            await self._select_one()
            latency_ms = (time.perf_counter() - started) * 1000
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        health = {
            "healthy": utilization < MAX_HEALTHY_UTILIZATION and latency_ms < MAX_HEALTHY_LATENCY_MS,
            "service": "database_pool",
            "connection_time_ms": round(latency_ms, 2),
            "pool_stats": {
                "pool_size": pool_size,
                "pool_available": pool_available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": requests_waiting,
            },
        }
        if requests_waiting:
            health["warnings"] = [f"Requests waiting for connections: {requests_waiting}"]
        return health


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
