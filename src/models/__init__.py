"""
Models package — export all SQLAlchemy models.
"""

from src.models.audit import BatchRun, ProcessingAudit
from src.models.base import Base
from src.models.event import AppendOnlyViolation, AuctionEvent
from src.models.lot import CanonicalLot
from src.models.snapshot import Snapshot, StagedRecord
from src.models.vehicle import CanonicalVehicle

__all__ = [
    "AppendOnlyViolation",
    "AuctionEvent",
    "Base",
    "BatchRun",
    "CanonicalLot",
    "CanonicalVehicle",
    "ProcessingAudit",
    "Snapshot",
    "StagedRecord",
]
