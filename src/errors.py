"""
Lotline — Error Taxonomy

Validation and conflict errors are per-record: recorded, never fatal to a
batch. Integrity and transient errors are fatal for the current run only and
are retried at the next schedule.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from src.config import ErrorClass


class LotlineError(Exception):
    """Base class. `error_class` drives run-summary breakdowns and audit rows."""

    error_class: ErrorClass = ErrorClass.TRANSIENT

    def __init__(self, reason: str, **context: Any):
        super().__init__(reason)
        self.reason = reason
        self.context = context


class IdentifierValidationError(LotlineError):
    """Malformed or invalid vehicle identifier."""

    error_class = ErrorClass.VALIDATION


class MergeConflictError(LotlineError):
    """Stale source timestamp, constraint violation or refused value during a write."""

    error_class = ErrorClass.CONFLICT

    def __init__(self, reason: str, constraint_name: str | None = None, **context: Any):
        super().__init__(reason, **context)
        self.constraint_name = constraint_name


class SnapshotIntegrityError(LotlineError):
    """Not enough (or inconsistent) snapshots to diff."""

    error_class = ErrorClass.INTEGRITY


class StoreUnavailableError(LotlineError):
    """Relational store unreachable. Retried at the next scheduled run."""

    error_class = ErrorClass.TRANSIENT


def constraint_name(exc: IntegrityError) -> str | None:
    """Name of the violated constraint, from the driver error when exposed."""
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
    # sqlite: "UNIQUE constraint failed: lots.external_lot_id"
    message = str(orig)
    if "constraint failed:" in message:
        return message.split("constraint failed:", 1)[1].strip()
    return None


def is_connectivity_error(exc: BaseException) -> bool:
    """True for driver/network failures, as opposed to data errors."""
    if isinstance(exc, (OperationalError, InterfaceError, OSError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def record_conflict(exc: Exception) -> MergeConflictError:
    """Per-record conflict for a constraint violation or a value the store refuses."""
    if isinstance(exc, IntegrityError):
        name = constraint_name(exc)
        return MergeConflictError(
            f"constraint_violation:{name or 'unknown'}",
            constraint_name=name,
            error=str(exc.orig),
        )
    return MergeConflictError(f"data_error:{type(exc).__name__}", error=str(exc))
