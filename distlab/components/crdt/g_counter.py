"""Grow-only counter (G-Counter) CRDT.

Each replica increments only its own slot. The counter's value is the
sum of all slots and merge takes the pointwise maximum.

Example::

    a = GCounter("R0", ["R0", "R1"])
    b = GCounter("R1", ["R0", "R1"])
    a.increment()
    b.increment()
    a.merge(b)
    assert a.value == 2
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

if TYPE_CHECKING:
    from collections.abc import Iterable


class GCounter:
    """Grow-only counter.

    Args:
        replica_id: Owner of this copy. Only its slot is incremented locally.
        replica_ids: Slots to pre-create at zero.
    """

    __slots__ = ("_replica_id", "_counts")

    def __init__(self, replica_id: str, replica_ids: Iterable[str] = ()):
        self._replica_id = replica_id
        self._counts: dict[str, int] = dict.fromkeys(replica_ids, 0)
        self._counts.setdefault(replica_id, 0)

    @property
    def replica_id(self) -> str:
        return self._replica_id

    @property
    def value(self) -> int:
        """Sum over every replica's slot."""
        return sum(self._counts.values())

    @property
    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def increment(self, n: int = 1) -> None:
        """Add ``n`` to this replica's slot.

        Raises:
            ValueError: If ``n`` is not positive.
        """
        if n < 1:
            raise ValueError(f"Increment must be positive, got {n}")
        self._counts[self._replica_id] += n

    def slot(self, replica_id: str) -> int:
        return self._counts.get(replica_id, 0)

    def merge(self, other: GCounter) -> None:
        for replica_id, count in other._counts.items():
            self._counts[replica_id] = max(self._counts.get(replica_id, 0), count)

    def to_dict(self) -> dict:
        return {"type": "GCounter", "replica_id": self._replica_id, "counts": dict(self._counts)}

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        counter = cls(data["replica_id"])
        counter._counts = dict(data["counts"])
        return counter

    def __repr__(self) -> str:
        return f"GCounter(replica_id={self._replica_id!r}, value={self.value})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GCounter):
            return NotImplemented
        keys = set(self._counts) | set(other._counts)
        return all(self.slot(k) == other.slot(k) for k in keys)
