"""The Raft log with support for a compacted prefix held in a snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from .messages import LogEntry


@dataclass
class RaftLog:
    """Log entries following a snapshot.

    Indices are 1-based and global: the entry at index
    ``last_included_index + 1`` is the first one kept in ``entries``.
    """

    entries: list[LogEntry] = field(default_factory=list)
    last_included_index: int = 0
    last_included_term: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self.entries)

    def _pos(self, index: int) -> int:
        return index - self.last_included_index - 1

    def last_index(self) -> int:
        return self.last_included_index + len(self.entries)

    def last_term(self) -> int:
        if self.entries:
            return self.entries[-1].term
        return self.last_included_term

    def entry(self, index: int) -> LogEntry:
        """Return the entry at ``index``; raise IndexError if it is not held."""
        if not self.last_included_index < index <= self.last_index():
            raise IndexError(f"log index {index} is not in the log")
        return self.entries[self._pos(index)]

    def term_at(self, index: int) -> int:
        """Return the term at ``index``, including the snapshot's last index."""
        if index == self.last_included_index:
            return self.last_included_term
        return self.entry(index).term

    def append(self, entry: LogEntry) -> int:
        """Append an entry and return its index."""
        self.entries.append(entry)
        return self.last_index()

    def entries_from(self, index: int) -> list[LogEntry]:
        """Return a copy of the entries from ``index`` to the end."""
        if not self.last_included_index < index <= self.last_index() + 1:
            raise IndexError(f"log index {index} is not in the log")
        return list(self.entries[self._pos(index):])

    def truncate_from(self, index: int) -> None:
        """Delete the entry at ``index`` and every entry after it."""
        if not self.last_included_index < index <= self.last_index() + 1:
            raise IndexError(f"log index {index} is not in the log")
        del self.entries[self._pos(index):]

    def first_index_of_term(self, term: int, upto: int) -> int | None:
        """Return the first index up to ``upto`` whose entry has ``term``."""
        for index in range(self.last_included_index + 1, min(upto, self.last_index()) + 1):
            if self.entries[self._pos(index)].term == term:
                return index
        return None

    def last_index_of_term(self, term: int, upto: int) -> int | None:
        """Return the last index at or before ``upto`` whose entry has ``term``."""
        for index in range(min(upto, self.last_index()), self.last_included_index, -1):
            if self.entries[self._pos(index)].term == term:
                return index
        return None

    def compact(self, last_included_index: int) -> bool:
        """Discard entries up to ``last_included_index`` into the snapshot.

        Returns False, changing nothing, if the snapshot already covers it.
        """
        if last_included_index <= self.last_included_index:
            return False
        term = self.entry(last_included_index).term
        del self.entries[: self._pos(last_included_index) + 1]
        self.last_included_index = last_included_index
        self.last_included_term = term
        return True

    def install_snapshot(self, last_included_index: int, last_included_term: int) -> bool:
        """Adopt a snapshot sent by a leader.

        Entries after the snapshot are kept only if the log agrees with the
        snapshot's last term. Returns False if the local snapshot is as long.
        """
        if last_included_index <= self.last_included_index:
            return False
        if (
            last_included_index < self.last_index()
            and self.entry(last_included_index).term == last_included_term
        ):
            del self.entries[: self._pos(last_included_index) + 1]
        else:
            self.entries = []
        self.last_included_index = last_included_index
        self.last_included_term = last_included_term
        return True