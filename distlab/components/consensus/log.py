"""Replicated command log for the Raft engine.

Entries are 1-based. Followers in this simplified model place whatever
the leader sends at the leader's indices; there is no consistency check
on the preceding entry and no backtracking.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LogEntry:
    """A single log entry.

    Attributes:
        index: 1-based position in the log.
        term: Leader term when the entry was created.
        command: Client command.
    """

    index: int
    term: int
    command: object


class Log:
    """Append-only entry list with a commit pointer.

    Attributes:
        commit_index: Highest committed index (0 = nothing committed).
    """

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []
        self.commit_index: int = 0

    def append(self, term: int, command: object) -> LogEntry:
        entry = LogEntry(index=len(self._entries) + 1, term=term, command=command)
        self._entries.append(entry)
        return entry

    def place(self, entry: LogEntry) -> bool:
        """Store a leader's entry at its own index.

        An entry at an occupied index overwrites it; if the terms differ,
        everything after it is discarded too. An entry that would leave a
        gap is ignored.

        Returns:
            True if the entry is now in the log.
        """
        if entry.index < 1 or entry.index > len(self._entries) + 1:
            return False
        if entry.index == len(self._entries) + 1:
            self._entries.append(entry)
            return True
        existing = self._entries[entry.index - 1]
        if existing.term != entry.term:
            self._entries = self._entries[: entry.index - 1]
            self._entries.append(entry)
            self.commit_index = min(self.commit_index, entry.index - 1)
        return True

    def get(self, index: int) -> LogEntry | None:
        if index < 1 or index > len(self._entries):
            return None
        return self._entries[index - 1]

    def entries_after(self, index: int) -> list[LogEntry]:
        return list(self._entries[max(index, 0):])

    @property
    def last_index(self) -> int:
        return len(self._entries)

    @property
    def last_term(self) -> int:
        return self._entries[-1].term if self._entries else 0

    def committed_entries(self) -> list[LogEntry]:
        return list(self._entries[: self.commit_index])

    def advance_commit(self, new_commit_index: int) -> list[LogEntry]:
        """Move the commit pointer forward and return the newly committed entries."""
        if new_commit_index <= self.commit_index:
            return []
        old = self.commit_index
        self.commit_index = min(new_commit_index, len(self._entries))
        return list(self._entries[old : self.commit_index])

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Log(entries={len(self._entries)}, commit_index={self.commit_index})"
