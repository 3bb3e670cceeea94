"""Floor Monitor — Database Connection Manager.

Async PostgreSQL access through SQLAlchemy 2.0 and asyncpg. One pooled
engine per process, created by ``init_database()`` (API lifespan, stream
consumer startup) and disposed by ``shutdown_database()``.

Sessions:
    - ``get_db``: FastAPI dependency, one transaction per request
    - ``get_db_context``: short-lived session for the background consumer
      (speed lookups, status history)

Usage:
    from database import get_db

    @app.get("/api/machines/{machine_id}/production/popups")
    async def popups(machine_id: int, db: AsyncSession = Depends(get_db)):
        ...
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import DatabaseSettings, get_settings
from logger import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

# Counter upserts and popup lookups are single-row; anything slower is worth a line.
SLOW_QUERY_MS = 250


# =============================================================================
# Engine
# =============================================================================

def _create_engine(db: DatabaseSettings, echo: bool) -> AsyncEngine:
    engine = create_async_engine(
        db.async_dsn,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_recycle=1800,
        pool_pre_ping=True,
        connect_args={"server_settings": {"application_name": "floor-monitor"}, "command_timeout": 30},
        echo=echo,
        hide_parameters=True,
    )

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _started(conn, cursor, statement, parameters, context, executemany):
        conn.info["query_started"] = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def _finished(conn, cursor, statement, parameters, context, executemany):
        started = conn.info.pop("query_started", None)
        if started is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > SLOW_QUERY_MS:
            logger.warning("Slow query", query=statement[:300], latency_ms=round(elapsed_ms, 2))

    @event.listens_for(engine.sync_engine, "invalidate")
    def _invalidated(dbapi_connection, connection_record, exception):
        logger.warning("Connection invalidated", error=str(exception) if exception else None)

    return engine


# =============================================================================
# Lifecycle
# =============================================================================

async def init_database(attempts: int = 1, retry_delay: float = 2.0) -> None:
    """Create the engine and verify connectivity.

    The stream consumer may start before PostgreSQL is accepting
    connections, so it passes ``attempts > 1``.

    Raises:
        RuntimeError: If the database is still unreachable after all attempts.
    """
    global _engine, _session_maker

    if _engine is not None:
        return

    settings = get_settings()
    engine = _create_engine(settings.database, echo=settings.debug)
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            break
        except (DBAPIError, OSError) as exc:
            last_error = exc
            logger.warning("Database not reachable: %s", exc, attempt=attempt, attempts=attempts,
                           dsn=settings.database.dsn_safe)
            if attempt < attempts:
                await asyncio.sleep(retry_delay)
    else:
        await engine.dispose()
        raise RuntimeError(f"Failed to initialize database: {last_error}") from last_error

    _engine = engine
    _session_maker = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    logger.info("Database initialized", dsn=settings.database.dsn_safe, pool_size=settings.database.pool_size)


async def shutdown_database() -> None:
    global _engine, _session_maker

    if _engine is None:
        return
    engine, _engine, _session_maker = _engine, None, None
    await engine.dispose()
    logger.info("Database connections disposed")


# =============================================================================
# Sessions
# =============================================================================

def _require_session_maker() -> async_sessionmaker[AsyncSession]:
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: commit when the request succeeds, roll back otherwise."""
    async with _require_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except DBAPIError as exc:
            await session.rollback()
            logger.error("Database operation failed", error_type=type(exc).__name__, error=str(exc))
            raise
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session for work outside a request (stream consumer lookups)."""
    async with _require_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database_health() -> dict[str, Any]:
    """Round-trip latency and pool usage for ``/health``."""
    if _engine is None:
        return {"status": "unhealthy", "error": "Database not initialized"}
    started = time.perf_counter()
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (DBAPIError, OSError) as exc:
        logger.error("Database health check failed", error_type=type(exc).__name__, error=str(exc))
        return {"status": "unhealthy", "error": str(exc)}
    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "pool": {"size": _engine.pool.size(), "checked_out": _engine.pool.checkedout()},
    }
