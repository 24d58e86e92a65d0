"""Eventual consistency with tunable consistency levels.

Each write is stamped with the coordinator's vector clock. The
consistency level decides how many replicas are contacted synchronously:

======== ============================== ======================
Level    Synchronous replicas           Read sample
======== ============================== ======================
ONE      0 (background replication)     the local node
QUORUM   majority(RF) - 1               local + majority(RF)
ALL      RF - 1                         every healthy node
======== ============================== ======================

ONE schedules the remaining replication on the engine's scheduler; it
runs only when the caller drives ``run_due`` or ``run_pending``.
Recovering a node schedules an anti-entropy pass the same way.

Reads return the value with the causally greatest vector clock. Equal
clocks count as newer, so among equals the last one sampled wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.logical_clocks import Causality, compare_vectors, merge_vectors
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

BACKGROUND_REPLICATION_DELAY_MS = 1000.0
ANTI_ENTROPY_DELAY_MS = 500.0


class ConsistencyLevel(Enum):
    ONE = "ONE"
    QUORUM = "QUORUM"
    ALL = "ALL"


@dataclass(frozen=True)
class VersionedValue:
    value: Any
    vector_clock: dict[str, int]
    timestamp: float = 0.0


@dataclass
class EventualNode(Node):
    data: dict[str, VersionedValue] = field(default_factory=dict)
    vector_clock: dict[str, int] = field(default_factory=dict)
    version: int = 0


@dataclass(frozen=True)
class Replicate:
    key: str
    value: Any
    vector_clock: dict[str, int]


@dataclass(frozen=True)
class EventualStats:
    """Attributes:
        inconsistent_keys: Keys with more than one distinct value across healthy nodes.
        pending_background_tasks: Scheduled replication/anti-entropy tasks not yet run.
    """

    total_nodes: int = 0
    healthy_nodes: int = 0
    failed_nodes: int = 0
    total_keys: int = 0
    inconsistent_keys: int = 0
    replication_factor: int = 0
    pending_background_tasks: int = 0


def _newer(candidate: dict[str, int], current: dict[str, int]) -> bool:
    return compare_vectors(candidate, current) in (Causality.AFTER, Causality.EQUAL)


class EventualConsistencyEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}`` with replication factor ``replication_factor``.

    Args:
        node_count: Cluster size.
        replication_factor: Copies of each write, coordinator included.
        background_delay_ms: Delay before ONE's background replication.
        anti_entropy_delay_ms: Delay between recovery and anti-entropy.
    """

    message_prefix = "ec"

    def __init__(
        self,
        node_count: int = 5,
        replication_factor: int = 3,
        *,
        background_delay_ms: float = BACKGROUND_REPLICATION_DELAY_MS,
        anti_entropy_delay_ms: float = ANTI_ENTROPY_DELAY_MS,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        if replication_factor < 1:
            raise ValueError(f"replication_factor must be >= 1, got {replication_factor}")
        self._node_count = node_count
        self.replication_factor = replication_factor
        self.background_delay_ms = background_delay_ms
        self.anti_entropy_delay_ms = anti_entropy_delay_ms
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        ids = [f"N{i}" for i in range(self._node_count)]
        self._topology = Topology(EventualNode(i, vector_clock=dict.fromkeys(ids, 0)) for i in ids)

    def _message_handlers(self):
        return {Replicate: self._handle_replicate}

    def _instructions(self):
        return {"write": self.write, "read": self.read, "run_anti_entropy": self.run_anti_entropy}

    @property
    def quorum_size(self) -> int:
        return (self.replication_factor + 1) // 2

    @property
    def stats(self) -> EventualStats:
        nodes = list(self._topology)
        healthy = self._topology.healthy()
        keys = {key for node in nodes for key in node.data}
        inconsistent = sum(
            1 for key in keys if len({repr(n.data[key].value) for n in healthy if key in n.data}) > 1
        )
        return EventualStats(
            total_nodes=len(nodes),
            healthy_nodes=len(healthy),
            failed_nodes=len(nodes) - len(healthy),
            total_keys=len(keys),
            inconsistent_keys=inconsistent,
            replication_factor=self.replication_factor,
            pending_background_tasks=len(self._scheduler),
        )

    def _sync_replica_count(self, level: ConsistencyLevel, available: int) -> int:
        if level is ConsistencyLevel.ONE:
            return 0
        if level is ConsistencyLevel.QUORUM:
            return self.quorum_size - 1
        return min(self.replication_factor - 1, available)

    def write(self, node_id: str, key: str, value: Any, level: ConsistencyLevel | str = ConsistencyLevel.QUORUM) -> None:
        level = ConsistencyLevel(level)
        node = self._topology.get(node_id)
        if node is None or not node.is_healthy:
            self.log_event("write_failed", f"Write to {node_id} failed (node unhealthy)", key=key, node_id=node_id)
            return

        node.vector_clock[node_id] = node.vector_clock.get(node_id, 0) + 1
        node.version += 1
        stored = VersionedValue(value, dict(node.vector_clock), self.now)
        node.data[key] = stored
        self.log_event("write_local", f"{node_id} writes {key}={value!r}", key=key, value=value, node_id=node_id)

        peers = [n for n in self._topology.healthy() if n.id != node_id]
        count = self._sync_replica_count(level, len(peers))
        for peer in peers[:count]:
            self._send_replicate(node_id, peer.id, key, stored)

        if level is ConsistencyLevel.ONE:
            for peer in peers[: self.replication_factor - 1]:
                self.schedule(
                    self.background_delay_ms,
                    lambda target=peer.id: self._send_replicate(node_id, target, key, stored),
                    f"background replicate {key} -> {peer.id}",
                )

        self.log_event(
            "write_complete",
            f"Write {key}={value!r} complete ({level.value})",
            key=key,
            value=value,
            node_id=node_id,
            consistency_level=level.value,
            replicas=count,
        )

    def _send_replicate(self, source: str, target: str, key: str, stored: VersionedValue) -> None:
        self.send(source, target, Replicate(key, stored.value, dict(stored.vector_clock)))
        self.log_event("replicate_sent", f"{source} -> {target}: Replicate {key}", source=source, target=target, key=key)

    def _handle_replicate(self, message: Message) -> None:
        node = self._topology.get(message.target)
        payload: Replicate = message.payload
        node.vector_clock = merge_vectors(node.vector_clock, payload.vector_clock)
        existing = node.data.get(payload.key)
        if existing is not None and not _newer(payload.vector_clock, existing.vector_clock):
            return
        node.data[payload.key] = VersionedValue(payload.value, dict(node.vector_clock), self.now)
        node.version += 1
        self.log_event(
            "replicate_received",
            f"{node.id} received {payload.key}={payload.value!r}",
            node_id=node.id,
            key=payload.key,
            value=payload.value,
        )

    def read(self, node_id: str, key: str, level: ConsistencyLevel | str = ConsistencyLevel.ONE) -> Any:
        """Read ``key`` through ``node_id``.

        Returns:
            The causally newest value among the sampled replicas, or None.
        """
        level = ConsistencyLevel(level)
        node = self._topology.get(node_id)
        if node is None or not node.is_healthy:
            self.log_event("read_failed", f"Read from {node_id} failed (node unhealthy)", key=key, node_id=node_id)
            return None

        healthy = self._topology.healthy()
        if level is ConsistencyLevel.ONE:
            sample = []
        elif level is ConsistencyLevel.QUORUM:
            sample = healthy[: self.quorum_size]
        else:
            sample = healthy

        newest = node.data.get(key)
        for replica in sample:
            candidate = replica.data.get(key)
            if candidate is not None and (newest is None or _newer(candidate.vector_clock, newest.vector_clock)):
                newest = candidate

        value = newest.value if newest else None
        self.log_event(
            f"read_{'local' if level is ConsistencyLevel.ONE else level.value.lower()}",
            f"{node_id} reads {key}={value!r} ({level.value})",
            key=key,
            node_id=node_id,
            value=value,
            nodes_read=max(len(sample), 1),
        )
        return value

    def run_anti_entropy(self) -> int:
        """Pair every healthy node with a random healthy peer and ship newer values both ways.

        Returns:
            Number of Replicate messages sent.
        """
        healthy = self._topology.healthy()
        sent = 0
        for node in healthy:
            peers = [p for p in healthy if p.id != node.id]
            if not peers:
                continue
            peer = self._rng.choice(peers)
            for key, ours in node.data.items():
                theirs = peer.data.get(key)
                if theirs is None or _newer(ours.vector_clock, theirs.vector_clock):
                    self._send_replicate(node.id, peer.id, key, ours)
                    sent += 1
                elif compare_vectors(theirs.vector_clock, ours.vector_clock) is Causality.AFTER:
                    self._send_replicate(peer.id, node.id, key, theirs)
                    sent += 1
            for key, theirs in peer.data.items():
                if key not in node.data:
                    self._send_replicate(peer.id, node.id, key, theirs)
                    sent += 1
        self.log_event("anti_entropy", "Anti-entropy sync initiated", messages=sent)
        return sent

    def _on_recover(self, node: Node) -> None:
        self.schedule(self.anti_entropy_delay_ms, self.run_anti_entropy, f"anti-entropy after {node.id} recovery")
