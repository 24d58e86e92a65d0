"""Node registry shared by all protocol engines.

A ``Topology`` is an arena of nodes keyed by id. Most engines create their
nodes once, when the engine is built, and afterwards only toggle them
between healthy and failed; the partitioning engines also add and remove
members. Nodes refer to each other by id, never by object.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class NodeStatus(Enum):
    HEALTHY = "healthy"
    FAILED = "failed"
    PROCESSING = "processing"


@dataclass
class Node:
    """Base participant. Protocol engines subclass this with their own fields.

    Attributes:
        id: Unique identifier within one engine.
        status: Health flag. Only healthy nodes send or receive messages.
    """

    id: str
    status: NodeStatus = NodeStatus.HEALTHY

    @property
    def is_healthy(self) -> bool:
        return self.status is NodeStatus.HEALTHY


N = TypeVar("N", bound=Node)


def majority(n: int) -> int:
    """Smallest strict majority of ``n`` nodes."""
    return n // 2 + 1


def byzantine_faults(n: int) -> int:
    """Maximum Byzantine faults ``f`` tolerated by ``n`` replicas."""
    return (n - 1) // 3


def byzantine_quorum(n: int) -> int:
    """Byzantine quorum size ``2f + 1``."""
    return 2 * byzantine_faults(n) + 1


class Topology(Generic[N]):
    """Ordered id -> node arena.

    Iteration order is construction order, which engines rely on for
    deterministic broadcasts.

    Args:
        nodes: Nodes to register. Ids must be unique.
    """

    def __init__(self, nodes: Iterable[N] = ()):
        self._nodes: dict[str, N] = {}
        for node in nodes:
            self.add(node)

    def add(self, node: N) -> None:
        if node.id in self._nodes:
            raise ValueError(f"duplicate node id {node.id!r}")
        self._nodes[node.id] = node

    def remove(self, node_id: str) -> N | None:
        """Drop ``node_id`` from the arena. Only membership-changing engines use this."""
        return self._nodes.pop(node_id, None)

    def get(self, node_id: str) -> N | None:
        return self._nodes.get(node_id)

    def ids(self) -> list[str]:
        return list(self._nodes)

    def healthy(self) -> list[N]:
        return [n for n in self._nodes.values() if n.is_healthy]

    def healthy_ids(self) -> list[str]:
        return [n.id for n in self._nodes.values() if n.is_healthy]

    def is_healthy(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and node.is_healthy

    def others(self, node_id: str) -> list[N]:
        """Every node except ``node_id``, healthy or not."""
        return [n for n in self._nodes.values() if n.id != node_id]

    @property
    def majority(self) -> int:
        return majority(len(self._nodes))

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[N]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Topology(nodes={len(self._nodes)}, healthy={len(self.healthy())})"
