"""Protocol shared by the state-based CRDTs.

A CRDT's ``merge`` is a join over a lattice (set union, pointwise max),
so it must be:

- **Commutative**: ``merge(a, b) == merge(b, a)``
- **Associative**: ``merge(a, merge(b, c)) == merge(merge(a, b), c)``
- **Idempotent**: ``merge(a, a) == a``

Replicas that have seen the same set of updates therefore report the
same ``value`` no matter in which order, or how often, they merged.
"""

from __future__ import annotations

from typing import Any, Protocol, Self, runtime_checkable


@runtime_checkable
class CRDT(Protocol):
    """Structural type implemented by ``GCounter``, ``ORSet`` and ``RGA``."""

    @property
    def value(self) -> Any:
        """The externally observable value."""
        ...

    def merge(self, other: Self) -> None:
        """Join ``other``'s state into this replica, in place."""
        ...

    def to_dict(self) -> dict:
        """Plain-dict state, as shipped in a Sync message."""
        ...

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Rebuild a replica from ``to_dict()`` output."""
        ...
