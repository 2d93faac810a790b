"""Thread-safe storage for Raft state and service snapshots."""

from __future__ import annotations

import threading


class Persister:
    """Holds the persisted Raft state and the latest service snapshot."""

    def __init__(self, raft_state: bytes = b"", snapshot: bytes = b"") -> None:
        self._lock = threading.Lock()
        self._raft_state = bytes(raft_state)
        self._snapshot = bytes(snapshot)

    def copy(self) -> Persister:
        """Return a new persister holding the same state and snapshot."""
        with self._lock:
            return Persister(self._raft_state, self._snapshot)

    def save_raft_state(self, state: bytes) -> None:
        with self._lock:
            self._raft_state = bytes(state)

    def read_raft_state(self) -> bytes:
        with self._lock:
            return self._raft_state

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raft_state)

    def save_state_and_snapshot(self, state: bytes, snapshot: bytes) -> None:
        """Save Raft state and snapshot together as one atomic action."""
        with self._lock:
            self._raft_state = bytes(state)
            self._snapshot = bytes(snapshot)

    def read_snapshot(self) -> bytes:
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)