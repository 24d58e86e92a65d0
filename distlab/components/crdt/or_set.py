"""Observed-Remove Set (OR-Set) CRDT.

Every add attaches a fresh tag ``"{replica}-{n}"`` to the element.
Remove moves the tags this replica has *observed* for the element into a
removed-tag set. An element is a member while at least one of its tags
is not removed. Merge is the union of both tag maps and of both removed
sets, so an add concurrent with a remove survives (add wins).

Example::

    s = ORSet("R0")
    s.add("apple")
    s.add("banana")
    s.remove("apple")
    assert s.elements == frozenset({"banana"})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

if TYPE_CHECKING:
    from collections.abc import Iterator


class ORSet:
    """Observed-Remove Set with tombstoned tags.

    Attributes:
        removed: Tags that have been removed on any merged replica.
    """

    __slots__ = ("_replica_id", "_tags", "_seq", "removed")

    def __init__(self, replica_id: str):
        self._replica_id = replica_id
        self._tags: dict[str, set[str]] = {}
        self._seq = 0
        self.removed: set[str] = set()

    @property
    def replica_id(self) -> str:
        return self._replica_id

    @property
    def value(self) -> frozenset[str]:
        return self.elements

    @property
    def elements(self) -> frozenset[str]:
        return frozenset(e for e, tags in self._tags.items() if tags - self.removed)

    def tags(self, element: str) -> frozenset[str]:
        return frozenset(self._tags.get(element, ()))

    def add(self, element: str) -> str:
        """Add ``element`` under a new tag and return the tag."""
        tag = f"{self._replica_id}-{self._seq}"
        self._seq += 1
        self._tags.setdefault(element, set()).add(tag)
        return tag

    def remove(self, element: str) -> frozenset[str]:
        """Tombstone every tag of ``element`` seen so far.

        Returns:
            The tags removed. Empty if the element was never observed.
        """
        observed = frozenset(self._tags.get(element, ()))
        self.removed |= observed
        return observed

    def contains(self, element: str) -> bool:
        return bool(self._tags.get(element, set()) - self.removed)

    def merge(self, other: ORSet) -> None:
        for element, tags in other._tags.items():
            self._tags.setdefault(element, set()).update(tags)
        self.removed |= other.removed

    def to_dict(self) -> dict:
        return {
            "type": "ORSet",
            "replica_id": self._replica_id,
            "seq": self._seq,
            "tags": {e: sorted(tags) for e, tags in self._tags.items()},
            "removed": sorted(self.removed),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        s = cls(data["replica_id"])
        s._seq = data["seq"]
        s._tags = {e: set(tags) for e, tags in data["tags"].items()}
        s.removed = set(data["removed"])
        return s

    def __contains__(self, element: object) -> bool:
        return isinstance(element, str) and self.contains(element)

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.elements))

    def __repr__(self) -> str:
        return f"ORSet(replica_id={self._replica_id!r}, elements={sorted(self.elements)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ORSet):
            return NotImplemented
        return self.elements == other.elements
