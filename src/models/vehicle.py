"""
Lotline — Canonical Vehicle Model

One row per physical vehicle, keyed by its canonical identifier.
Descriptive fields are merged fill-missing-only: a known value is never
replaced.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class CanonicalVehicle(Base):
    """Deduplicated vehicle entity shared by all of its auction attempts."""

    __tablename__ = "vehicles"

    canonical_identifier: Mapped[str] = mapped_column(
        String(32), primary_key=True, comment="Uppercased, trimmed vehicle identifier"
    )
    identifier_format: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="full_17, regional or legacy"
    )
    raw_identifier: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Identifier as first seen in an export"
    )

    # --- Descriptive fields (fill-missing-only) ---
    year: Mapped[int | None] = mapped_column(INTEGER, nullable=True)
    make: Mapped[str | None] = mapped_column(String, nullable=True)
    model: Mapped[str | None] = mapped_column(String, nullable=True)
    trim: Mapped[str | None] = mapped_column(String, nullable=True)
    body: Mapped[str | None] = mapped_column(String, nullable=True)
    fuel: Mapped[str | None] = mapped_column(String, nullable=True)
    transmission: Mapped[str | None] = mapped_column(String, nullable=True)
    drive: Mapped[str | None] = mapped_column(String, nullable=True)
    engine: Mapped[str | None] = mapped_column(String, nullable=True)
    color: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<CanonicalVehicle {self.canonical_identifier!r} {self.year} {self.make} {self.model}>"
