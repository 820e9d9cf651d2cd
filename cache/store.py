"""
cache/store.py -- In-memory holder for the latest Snapshot of each view context.

Only the most recent snapshot per context is kept; nothing is written to disk.
Publishing replaces the whole Snapshot reference under a lock, so readers
always get a complete snapshot and never observe a half-merged one. Shared by
the API and CLI so both read the same published state.

Usage:
    store = SnapshotStore()
    snap = store.get("logs")          # empty Snapshot if never published
    store.publish("logs", new_snap)   # returns the new version
    store.version("logs")             # publishes so far, 0 if none
"""

import threading

from core.models import Snapshot


class SnapshotStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[str, Snapshot] = {}
        self._versions: dict[str, int] = {}

    def get(self, context: str) -> Snapshot:
        """Return the latest published snapshot, or an empty (all-unpopulated) one."""
        with self._lock:
            return self._snapshots.get(context, Snapshot())

    def version(self, context: str) -> int:
        """Number of publishes for context. 0 means nothing has been published."""
        with self._lock:
            return self._versions.get(context, 0)

    def publish(self, context: str, snapshot: Snapshot) -> int:
        """Swap in snapshot as the current state for context and return its version."""
        with self._lock:
            version = self._versions.get(context, 0) + 1
            self._snapshots[context] = snapshot
            self._versions[context] = version
            return version
