"""
Lotline — Application Entrypoint

Configures structlog, opens the async SQLAlchemy engine, verifies the schema
is migrated, and runs the lifecycle scheduler until SIGTERM/SIGINT.

Run via:
    python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import structlog
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings
from src.models import Base
from src.pipeline.scheduler import run_scheduler

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """
    Route structlog through stdlib logging and render one JSON object per line.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # SQLAlchemy's own INFO output duplicates our job lines.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine(database_url: str | None = None) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Engine + session factory for DATABASE_URL (or the given URL).

    Pool sizing applies to PostgreSQL (asyncpg) only; SQLite URLs are used by
    local runs and get the driver's default pool.
    """
    logger = structlog.get_logger(__name__)
    url = database_url or settings.DATABASE_URL
    logger.info("database_engine_initializing", dialect=url.split(":", 1)[0])

    kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
    engine = create_async_engine(url, **kwargs)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_factory


def _missing_tables(sync_conn) -> list[str]:
    existing = set(inspect(sync_conn).get_table_names())
    return sorted(set(Base.metadata.tables) - existing)


async def check_database(engine: AsyncEngine) -> None:
    """
    Connectivity check plus schema presence.

    Raises RuntimeError when any lifecycle table is missing (run
    `alembic upgrade head` first).
    """
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
        missing = await conn.run_sync(_missing_tables)
    if missing:
        raise RuntimeError(f"database schema incomplete, missing tables: {', '.join(missing)}")


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Daemon entrypoint: logging → engine → schema check → scheduler.

    Startup failures are logged and re-raised; the engine is always disposed.
    """
    configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)
    logger.info("lotline_startup_begin", version=VERSION)

    if not settings.SNAPSHOT_INBOX_DIR:
        logger.warning("config_snapshot_inbox_missing", note="cycles will only diff existing snapshots")

    engine, session_factory = await create_db_engine()
    try:
        try:
            await check_database(engine)
        except Exception as e:
            logger.error("database_check_failed", error=str(e), error_type=type(e).__name__)
            raise

        logger.info(
            "lotline_startup_complete",
            cycle_interval_minutes=settings.CYCLE_INTERVAL_MINUTES,
            retention_interval_hours=settings.RETENTION_INTERVAL_HOURS,
            grace_hours=settings.DISAPPEARANCE_GRACE_HOURS,
            on_approval_days=settings.ON_APPROVAL_WAIT_DAYS,
        )
        await run_scheduler(engine, session_factory)
    except KeyboardInterrupt:
        logger.info("lotline_interrupted_by_user")
    finally:
        await engine.dispose()
        logger.info("lotline_shutdown_complete")


if __name__ == "__main__":
    asyncio.run(main())
