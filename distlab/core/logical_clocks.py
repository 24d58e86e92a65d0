"""Logical clocks used by the causality and replication engines.

- ``LamportClock``: one integer per process; gives a total order once ties
  are broken by process id.
- ``VectorClock``: one counter per process; detects causality and
  concurrency.

Vector snapshots travel inside messages as plain ``dict[str, int]``; the
module-level helpers compare such snapshots directly::

    a = {"P0": 2, "P1": 0}
    b = {"P0": 2, "P1": 1}
    assert compare_vectors(a, b) is Causality.BEFORE
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class Causality(Enum):
    """Relationship of one vector timestamp to another."""

    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"
    EQUAL = "equal"


def happened_before(a: Mapping[str, int], b: Mapping[str, int]) -> bool:
    """True iff every component of ``a`` is <= ``b`` and at least one is <."""
    strictly_less = False
    for key in set(a) | set(b):
        av, bv = a.get(key, 0), b.get(key, 0)
        if av > bv:
            return False
        if av < bv:
            strictly_less = True
    return strictly_less


def compare_vectors(a: Mapping[str, int], b: Mapping[str, int]) -> Causality:
    if happened_before(a, b):
        return Causality.BEFORE
    if happened_before(b, a):
        return Causality.AFTER
    if all(a.get(k, 0) == b.get(k, 0) for k in set(a) | set(b)):
        return Causality.EQUAL
    return Causality.CONCURRENT


def merge_vectors(a: Mapping[str, int], b: Mapping[str, int]) -> dict[str, int]:
    """Componentwise max of two snapshots."""
    return {k: max(a.get(k, 0), b.get(k, 0)) for k in sorted(set(a) | set(b))}


class LamportClock:
    """Scalar logical clock.

    Args:
        initial: Starting counter value.
    """

    __slots__ = ("_time",)

    def __init__(self, initial: int = 0):
        self._time = initial

    @property
    def time(self) -> int:
        return self._time

    def tick(self) -> int:
        """Local event: advance by one and return the new time."""
        self._time += 1
        return self._time

    def send(self) -> int:
        """Send event: advance and return the timestamp to attach."""
        return self.tick()

    def receive(self, remote_ts: int) -> int:
        """Receive event: ``max(local, remote) + 1``."""
        self._time = max(self._time, remote_ts) + 1
        return self._time

    def __repr__(self) -> str:
        return f"LamportClock({self._time})"


class VectorClock:
    """Vector clock owned by a single process.

    Only the owner's own local, send and receive events change the
    vector. Every known process always has an entry, starting at 0.

    Args:
        node_id: The owning process.
        node_ids: Every process in the system.
    """

    __slots__ = ("_node_id", "_vector")

    def __init__(self, node_id: str, node_ids: Iterable[str]):
        self._node_id = node_id
        self._vector: dict[str, int] = {nid: 0 for nid in node_ids}
        self._vector.setdefault(node_id, 0)

    @property
    def node_id(self) -> str:
        return self._node_id

    def tick(self) -> dict[str, int]:
        """Local event. Returns the new snapshot."""
        self._vector[self._node_id] += 1
        return self.snapshot()

    def send(self) -> dict[str, int]:
        """Send event. Returns the snapshot to attach to the message."""
        return self.tick()

    def receive(self, remote: Mapping[str, int]) -> dict[str, int]:
        """Receive event: componentwise max with ``remote``, then tick."""
        for nid, ts in remote.items():
            self._vector[nid] = max(self._vector.get(nid, 0), ts)
        return self.tick()

    def snapshot(self) -> dict[str, int]:
        return dict(self._vector)

    def happened_before(self, other: VectorClock) -> bool:
        return happened_before(self._vector, other._vector)

    def is_concurrent(self, other: VectorClock) -> bool:
        return compare_vectors(self._vector, other._vector) is Causality.CONCURRENT

    def __getitem__(self, node_id: str) -> int:
        return self._vector.get(node_id, 0)

    def __repr__(self) -> str:
        body = ", ".join(f"{k}:{v}" for k, v in self._vector.items())
        return f"VectorClock({self._node_id} [{body}])"
