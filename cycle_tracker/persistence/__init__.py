"""Persistence package.

Snapshot bridge for the in-flight trip plus the stores it and the finalizer
write to.
"""

from .snapshot import LoadedSnapshot, PendingHandOffs, SnapshotBridge
from .stores import (
    FileSnapshotStore,
    InMemorySnapshotStore,
    InMemoryTripHistoryStore,
    JsonTripHistoryStore,
)

__all__ = [
    "LoadedSnapshot",
    "SnapshotBridge",
    "PendingHandOffs",
    "FileSnapshotStore",
    "InMemorySnapshotStore",
    "InMemoryTripHistoryStore",
    "JsonTripHistoryStore",
]
