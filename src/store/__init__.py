from src.store.events import EventStore
from src.store.snapshots import SnapshotStore

__all__ = ["EventStore", "SnapshotStore"]
