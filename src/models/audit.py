"""
Lotline — Processing Audit & Batch Run Models

ProcessingAudit: one row per skipped or errored record, so no rejection is
silent. BatchRun: one row per job run, the monitoring boundary.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, BigIntPK, JSONPayload


class ProcessingAudit(Base):
    """Skip/error record written by the ingest, upsert and resolver jobs."""

    __tablename__ = "processing_audit"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job: Mapped[str] = mapped_column(String(16), nullable=False, comment="Job that wrote the row")
    error_class: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="validation, conflict, integrity, transient"
    )
    reason: Mapped[str] = mapped_column(String, nullable=False, comment="Machine-readable reason code")
    staged_record_id: Mapped[int | None] = mapped_column(BigIntPK, nullable=True)
    external_lot_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    constraint_name: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Violated DB constraint, for integrity conflicts"
    )
    detail: Mapped[dict | None] = mapped_column(JSONPayload, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_processing_audit_staged_record", "staged_record_id"),
        Index("ix_processing_audit_job_created", "job", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessingAudit job={self.job!r} class={self.error_class!r} "
            f"reason={self.reason!r} record={self.staged_record_id!r}>"
        )


class BatchRun(Base):
    """One execution of a lifecycle job."""

    __tablename__ = "batch_runs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="success, partial, failed, dry_run"
    )
    started_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    execution_ms: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    counts: Mapped[dict] = mapped_column(JSONPayload, nullable=False, default=dict)
    errors_by_class: Mapped[dict] = mapped_column(JSONPayload, nullable=False, default=dict)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("ix_batch_runs_job_started", "job", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<BatchRun job={self.job!r} status={self.status!r} started={self.started_at}>"
