"""Replicated Growable Array (RGA) sequence CRDT.

Each insert creates an element with a globally unique id
``"{replica}-{n}"`` that points at its left neighbour (``HEAD`` for the
front). The visible sequence is a depth-first walk from ``HEAD`` where
siblings are visited in id order. Deletes set a tombstone and never
remove the element, so later inserts can still anchor on it.

Merge is the union of elements with the tombstone flag OR-ed, which is
one-way: a deleted element never comes back.

Example::

    doc = RGA("R0")
    h = doc.insert("H")
    doc.insert("i", after_id=h)
    assert doc.text == "Hi"
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Self

HEAD_ID = "HEAD"


@dataclass
class RGAElement:
    """Attributes:
        id: Unique ``"{replica}-{n}"`` identifier.
        value: Character or token.
        prev_id: Element this one was inserted after.
        tombstone: True once deleted.
    """

    id: str
    value: str
    prev_id: str = HEAD_ID
    tombstone: bool = False


class RGA:
    """Sequence CRDT.

    Args:
        replica_id: Prefix for ids created by this replica.
    """

    def __init__(self, replica_id: str):
        self._replica_id = replica_id
        self._elements: dict[str, RGAElement] = {}
        self._seq = 0

    @property
    def replica_id(self) -> str:
        return self._replica_id

    @property
    def value(self) -> list[str]:
        return [e.value for e in self.sequence()]

    @property
    def text(self) -> str:
        return "".join(self.value)

    def get(self, element_id: str) -> RGAElement | None:
        return self._elements.get(element_id)

    def sequence(self) -> list[RGAElement]:
        """Visible elements in document order."""
        children: dict[str, list[RGAElement]] = {}
        for element in self._elements.values():
            children.setdefault(element.prev_id, []).append(element)
        for siblings in children.values():
            siblings.sort(key=lambda e: e.id)

        ordered: list[RGAElement] = []
        stack = list(reversed(children.get(HEAD_ID, [])))
        while stack:
            element = stack.pop()
            if not element.tombstone:
                ordered.append(element)
            stack.extend(reversed(children.get(element.id, [])))
        return ordered

    def insert(self, value: str, after_id: str | None = None) -> str:
        """Insert ``value`` after ``after_id`` and return the new element's id.

        An unknown or missing ``after_id`` appends after the last visible
        element.
        """
        if after_id != HEAD_ID and after_id not in self._elements:
            visible = self.sequence()
            after_id = visible[-1].id if visible else HEAD_ID
        element_id = f"{self._replica_id}-{self._seq}"
        self._seq += 1
        self._elements[element_id] = RGAElement(element_id, value, after_id)
        return element_id

    def delete(self, element_id: str) -> bool:
        """Tombstone ``element_id``. Returns False if it is unknown."""
        element = self._elements.get(element_id)
        if element is None:
            return False
        element.tombstone = True
        return True

    def merge(self, other: RGA) -> None:
        for element in other._elements.values():
            existing = self._elements.get(element.id)
            if existing is None:
                self._elements[element.id] = RGAElement(element.id, element.value, element.prev_id, element.tombstone)
            elif element.tombstone:
                existing.tombstone = True

    def to_dict(self) -> dict:
        return {
            "type": "RGA",
            "replica_id": self._replica_id,
            "seq": self._seq,
            "elements": [
                {"id": e.id, "value": e.value, "prev_id": e.prev_id, "tombstone": e.tombstone}
                for e in self._elements.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        rga = cls(data["replica_id"])
        rga._seq = data["seq"]
        for item in data["elements"]:
            rga._elements[item["id"]] = RGAElement(**item)
        return rga

    def __len__(self) -> int:
        return len(self.sequence())

    def __repr__(self) -> str:
        return f"RGA(replica_id={self._replica_id!r}, text={self.text!r})"
