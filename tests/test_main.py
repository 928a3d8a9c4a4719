"""Tests for the application entrypoint helpers."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from src.main import check_database, configure_logging, create_db_engine


@pytest.mark.asyncio
async def test_check_database_passes_on_migrated_schema(db_engine):
    await check_database(db_engine)


@pytest.mark.asyncio
async def test_check_database_reports_missing_tables():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    try:
        with pytest.raises(RuntimeError, match="auction_events"):
            await check_database(engine)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_create_db_engine_for_sqlite_url():
    engine, session_factory = await create_db_engine("sqlite+aiosqlite:///:memory:")
    try:
        assert engine.dialect.name == "sqlite"
        assert session_factory.kw["expire_on_commit"] is False
    finally:
        await engine.dispose()


def test_configure_logging_sets_level():
    configure_logging("warning")

    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
