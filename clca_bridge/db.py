"""
CLCA Bridge - Database Layer

Async PostgreSQL connection pool (psycopg 3 + psycopg_pool) for the dead
letter queue tables.

Initialization:
- Exponential backoff retry (5 attempts, max 30s total)
- DSN host/port/dbname/user logged, never the password
- Pool health state tracked for the CLI health command
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

from loguru import logger
from psycopg_pool import AsyncConnectionPool

from . import __version__

# ---------------------------------------------------------------------------
# Pool Health State
# ---------------------------------------------------------------------------


@dataclass
class PoolHealthState:
    """Tracks pool initialization state."""

    initialized: bool = False
    healthy: bool = False
    last_error: str | None = None
    last_check_at: float | None = None
    init_attempts: int = 0
    init_duration_ms: float | None = None


_pool_health = PoolHealthState()
_db_pool: Optional[AsyncConnectionPool] = None

MAX_RETRY_ATTEMPTS = 5
MAX_TOTAL_WAIT_SECONDS = 30.0
BASE_DELAY_SECONDS = 1.0
READINESS_CHECK_TIMEOUT = 2.0


def get_pool_health() -> PoolHealthState:
    return _pool_health


def _parse_dsn_for_logging(dsn: str) -> dict[str, str | None]:
    """Loggable DSN components (no password)."""
    try:
        parsed = urlparse(dsn)
        query_params = parse_qs(parsed.query)
        return {
            "host": parsed.hostname,
            "port": str(parsed.port) if parsed.port else "5432",
            "dbname": parsed.path.lstrip("/") if parsed.path else None,
            "user": parsed.username,
            "sslmode": query_params.get("sslmode", ["not_set"])[0],
        }
    except ValueError as e:
        return {"error": str(e)}


async def init_db_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 5,
) -> Optional[AsyncConnectionPool]:
    """
    Open the connection pool, retrying with exponential backoff.

    Returns:
        The pool, or None if every attempt failed (see get_pool_health())
    """
    global _db_pool

    if _db_pool is not None:
        return _db_pool

    if not dsn:
        logger.warning("DATABASE_URL is not set; skipping DB init")
        _pool_health.last_error = "DATABASE_URL not configured"
        return None

    dsn_info = _parse_dsn_for_logging(dsn)
    logger.info(
        "Database connection parameters",
        host=dsn_info.get("host"),
        port=dsn_info.get("port"),
        dbname=dsn_info.get("dbname"),
        user=dsn_info.get("user"),
        sslmode=dsn_info.get("sslmode"),
    )

    app_name = "clca_bridge_v" + __version__.replace(".", "_").replace("-", "_")
    start_time = time.monotonic()
    last_error: Exception | None = None

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        _pool_health.init_attempts = attempt
        elapsed = time.monotonic() - start_time

        if elapsed >= MAX_TOTAL_WAIT_SECONDS:
            logger.error(
                f"DB pool init: time budget exhausted ({elapsed:.1f}s >= {MAX_TOTAL_WAIT_SECONDS}s)"
            )
            break

        pool: Optional[AsyncConnectionPool] = None
        try:
            logger.info(f"DB pool init: attempt {attempt}/{MAX_RETRY_ATTEMPTS}")
            pool = AsyncConnectionPool(
                dsn,
                min_size=min_size,
                max_size=max_size,
                kwargs={"application_name": app_name},
                open=False,
            )
            await pool.open()

            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1;")
                    result = await cur.fetchone()
                    if result is None or result[0] != 1:
                        raise RuntimeError("SELECT 1 did not return expected result")

            init_duration = (time.monotonic() - start_time) * 1000
            _db_pool = pool
            _pool_health.initialized = True
            _pool_health.healthy = True
            _pool_health.last_error = None
            _pool_health.init_duration_ms = init_duration
            _pool_health.last_check_at = time.monotonic()

            logger.info(
                f"Database pool initialized (attempt {attempt}, {init_duration:.0f}ms total)"
            )
            return pool

        except Exception as e:
            last_error = e
            _pool_health.last_error = f"{type(e).__name__}: {str(e)[:200]}"
            _pool_health.healthy = False
            logger.warning(f"DB pool init attempt {attempt} failed: {type(e).__name__}: {e}")
            if pool is not None:
                await pool.close()

            if attempt < MAX_RETRY_ATTEMPTS:
                delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
                jitter = random.uniform(0, delay * 0.3)
                actual_delay = min(delay + jitter, MAX_TOTAL_WAIT_SECONDS - elapsed)
                if actual_delay > 0:
                    logger.info(f"DB pool init: waiting {actual_delay:.1f}s before retry")
                    await asyncio.sleep(actual_delay)

    total_elapsed = time.monotonic() - start_time
    _pool_health.initialized = False
    _pool_health.healthy = False
    _pool_health.init_duration_ms = total_elapsed * 1000
    logger.error(
        f"Failed to initialize database pool after {_pool_health.init_attempts} attempts "
        f"({total_elapsed:.1f}s): {last_error}"
    )
    return None


async def check_db_ready(timeout: float = READINESS_CHECK_TIMEOUT) -> tuple[bool, str]:
    """
    SELECT 1 against the pool with a timeout.

    Returns:
        Tuple of (is_ready, status_message)
    """
    pool = _db_pool
    if pool is None:
        return False, _pool_health.last_error or "Pool not initialized"

    async def _ping() -> int:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1;")
                row = await cur.fetchone()
                return row[0] if row else 0

    start = time.monotonic()
    try:
        result = await asyncio.wait_for(_ping(), timeout=timeout)
    except asyncio.TimeoutError:
        _pool_health.healthy = False
        _pool_health.last_error = f"Query timeout ({timeout}s)"
        return False, f"timeout ({timeout}s)"
    except Exception as e:
        _pool_health.healthy = False
        _pool_health.last_error = f"{type(e).__name__}: {str(e)[:100]}"
        return False, f"error: {type(e).__name__}"

    latency_ms = (time.monotonic() - start) * 1000
    if result != 1:
        _pool_health.healthy = False
        _pool_health.last_error = f"SELECT 1 returned {result}"
        return False, f"unexpected_result: {result}"

    _pool_health.healthy = True
    _pool_health.last_error = None
    _pool_health.last_check_at = time.monotonic()
    return True, f"ok ({latency_ms:.0f}ms)"


async def close_db_pool() -> None:
    """Close the pool and reset health state."""
    global _db_pool
    if _db_pool is not None:
        logger.info("Closing PostgreSQL connection pool")
        await _db_pool.close()
        _db_pool = None
        _pool_health.initialized = False
        _pool_health.healthy = False
