"""
Lotline — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory aiosqlite engine with savepoint support (StaticPool)
- Session factory matching production settings
- Export row / snapshot builders
"""

from __future__ import annotations

import csv
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.models import Base, Snapshot, StagedRecord
from src.store.snapshots import SnapshotStore
from src.utils.export_row import ExportRow

pytest_plugins = ("pytest_asyncio",)

VIN_A = "1FTEW1EG7GFA12345"
VIN_B = "2T1BURHE0JC074839"

EXPORT_HEADERS = [
    "Lot number", "VIN", "Year", "Make", "Model Group", "Body Style", "Color",
    "Sale Date M/D/CY", "Sale time (HHMM)", "Sale Status",
    "High Bid =non-vix,Sealed=Vix", "Buy-It-Now Price", "Currency Code",
    "Yard name", "Location city", "Location state", "Location country", "Location ZIP",
    "Damage Description", "Sale Title Type", "Odometer", "Has Keys-Yes or No",
    "Last Updated Time",
]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine():
    """
    In-memory SQLite shared by every session of the test (StaticPool).

    pysqlite's implicit transaction handling is switched off and BEGIN is
    emitted explicitly so SAVEPOINT works.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    A session for direct reads/writes. Do not keep it inside a transaction
    while a job runs: all sessions share one connection.
    """
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_export_row(
    lot: str,
    vin: str | None = VIN_A,
    bid: str = "1500",
    sale_date: str = "102025",
    sale_time: str = "1400",
    status: str = "Pure Sale",
    buy_now: str = "",
    updated: str = "2025-10-20T10:00:00Z",
    **extra: str,
) -> dict[str, str]:
    """One export row keyed by the vendor's column headers."""
    row = {
        "Lot number": lot,
        "VIN": vin or "",
        "Year": "2016",
        "Make": "FORD",
        "Model Group": "F150",
        "Body Style": "PICKUP",
        "Color": "WHITE",
        "Sale Date M/D/CY": sale_date,
        "Sale time (HHMM)": sale_time,
        "Sale Status": status,
        "High Bid =non-vix,Sealed=Vix": bid,
        "Buy-It-Now Price": buy_now,
        "Currency Code": "USD",
        "Yard name": "TX - DALLAS",
        "Location city": "DALLAS",
        "Location state": "TX",
        "Location country": "USA",
        "Location ZIP": "75201",
        "Damage Description": "FRONT END",
        "Sale Title Type": "SC",
        "Odometer": "84211",
        "Has Keys-Yes or No": "YES",
        "Last Updated Time": updated,
    }
    row.update(extra)
    return row


@pytest.fixture
def export_row() -> Callable[..., dict[str, str]]:
    return make_export_row


@pytest.fixture
def base_time() -> datetime:
    return datetime(2025, 10, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seed_snapshot(session_factory, base_time) -> Callable[..., Awaitable[uuid.UUID]]:
    """
    Register a snapshot with staged rows straight from field bags.
    Successive calls are captured one hour apart unless captured_at is given.
    """
    calls = {"n": 0}

    async def _seed(rows: list[dict[str, Any]], captured_at: datetime | None = None) -> uuid.UUID:
        if captured_at is None:
            captured_at = base_time + timedelta(hours=calls["n"])
        calls["n"] += 1
        records = []
        for number, bag in enumerate(rows, start=1):
            parsed = ExportRow.from_field_bag(bag)
            records.append(StagedRecord(
                row_number=number,
                external_lot_id=parsed.external_lot_id,
                vehicle_identifier_raw=parsed.vehicle_identifier,
                field_bag=bag,
                source_timestamp=parsed.source_timestamp,
            ))
        async with session_factory() as session:
            async with session.begin():
                snapshot = await SnapshotStore(session).register(
                    Snapshot(
                        captured_at=captured_at,
                        row_count=len(rows),
                        content_fingerprint=uuid.uuid4().hex,
                        source_path=None,
                        headers=EXPORT_HEADERS,
                    ),
                    records,
                )
        return snapshot.id

    return _seed


@pytest.fixture
def write_export(tmp_path) -> Callable[..., Path]:
    """Write rows as a CSV export file under tmp_path."""

    def _write(name: str, rows: list[dict[str, str]], headers: list[str] | None = None) -> Path:
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=headers or EXPORT_HEADERS, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
        return path

    return _write
