"""Local persistence for the live production loop: the snapshot store."""

from edge.snapshot_store import SnapshotStore

__all__ = ["SnapshotStore"]
