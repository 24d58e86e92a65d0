"""Leaderless quorum replication with read repair.

A write lands at its coordinator, gets a version from the coordinator's
monotonically increasing counter and is sent to the first ``RF - 1`` other
nodes. A read samples up to R healthy replicas, returns the newest
version it saw and sends Repair messages to every healthy node that is
behind.

Write success is an estimate: the coordinator counts itself plus every
replica target that is healthy at send time and compares that with W.
Replicate messages are fire-and-forget, so the estimate can be wrong if a
target fails before delivery. ``QuorumStats.confirmed_acks`` counts the
replications that were actually applied, for comparison.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

REPAIR_SOURCE = "repair"


@dataclass(frozen=True)
class QuorumValue:
    value: Any
    version: int
    timestamp: float = 0.0


@dataclass
class QuorumNode(Node):
    """Replica.

    Attributes:
        data: Key -> newest value this node holds.
        version: Highest version this node has issued or applied.
    """

    data: dict[str, QuorumValue] = field(default_factory=dict)
    version: int = 0


@dataclass(frozen=True)
class Replicate:
    key: str
    value: Any
    version: int


@dataclass(frozen=True)
class Repair:
    key: str
    value: Any
    version: int


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one write.

    Attributes:
        success: True if the optimistic ack estimate reached W.
        acked: Coordinator plus healthy replica targets at send time.
        required: The requested W.
        version: Version stamped on the write, 0 if the write failed.
    """

    success: bool
    acked: int
    required: int
    version: int = 0


@dataclass(frozen=True)
class QuorumStats:
    total_nodes: int = 0
    healthy_nodes: int = 0
    total_keys: int = 0
    replication_factor: int = 0
    confirmed_acks: int = 0
    repairs_applied: int = 0


class QuorumReplicationEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}`` with replication factor ``replication_factor``."""

    message_prefix = "q"

    def __init__(
        self,
        node_count: int = 5,
        replication_factor: int = 3,
        *,
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
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(QuorumNode(f"N{i}") for i in range(self._node_count))
        self._confirmed_acks = 0
        self._repairs_applied = 0

    def _message_handlers(self):
        return {Replicate: self._handle_replicate, Repair: self._handle_repair}

    def _instructions(self):
        return {"write": self.write, "read": self.read}

    @property
    def stats(self) -> QuorumStats:
        keys = {key for node in self._topology for key in node.data}
        return QuorumStats(
            total_nodes=len(self._topology),
            healthy_nodes=len(self._topology.healthy()),
            total_keys=len(keys),
            replication_factor=self.replication_factor,
            confirmed_acks=self._confirmed_acks,
            repairs_applied=self._repairs_applied,
        )

    def replica_targets(self, node_id: str) -> list[QuorumNode]:
        """The first ``RF - 1`` other nodes in construction order, healthy or not."""
        others = self._topology.others(node_id)
        return others[: min(self.replication_factor - 1, len(others))]

    def write(self, key: str, value: Any, node_id: str, w: int) -> WriteResult:
        coordinator = self._topology.get(node_id)
        if coordinator is None or not coordinator.is_healthy:
            self.log_event("write_failed", f"Write failed at {node_id}", node_id=node_id, key=key)
            return WriteResult(success=False, acked=0, required=w)

        coordinator.version += 1
        stored = QuorumValue(value, coordinator.version, self.now)
        coordinator.data[key] = stored
        self.log_event(
            "write_local",
            f"{node_id} writes {key}={value!r}",
            node_id=node_id,
            key=key,
            value=value,
            version=stored.version,
        )

        acked = 1
        for target in self.replica_targets(node_id):
            self.send(node_id, target.id, Replicate(key, value, stored.version))
            if target.is_healthy:
                acked += 1

        success = acked >= w
        self.log_event(
            "write_quorum" if success else "write_incomplete",
            f"{node_id} write {'reached' if success else 'missed'} W={w}",
            node_id=node_id,
            key=key,
            quorum_write=w,
            acked=acked,
        )
        if not success:
            logger.info("[%s] write %s at %s missed W=%d (acked=%d)", self.name, key, node_id, w, acked)
        return WriteResult(success=success, acked=acked, required=w, version=stored.version)

    def read(self, key: str, node_id: str, r: int) -> QuorumValue | None:
        """Read ``key`` from up to ``r`` healthy replicas and repair stale nodes.

        Returns:
            The highest-versioned value observed, or None if no sampled
            replica holds the key.
        """
        coordinator = self._topology.get(node_id)
        if coordinator is None or not coordinator.is_healthy:
            self.log_event("read_failed", f"Read failed at {node_id}", node_id=node_id, key=key)
            return None

        candidates = [coordinator, *self.replica_targets(node_id)]
        sample = [n for n in candidates if n.is_healthy][:r]
        observed = [(n.id, n.data[key]) for n in sample if key in n.data]
        latest = max((v for _, v in observed), key=lambda v: v.version, default=None)

        self.log_event(
            "read_quorum",
            f"{node_id} reads {key} via R={r}",
            node_id=node_id,
            key=key,
            quorum_read=r,
            observed=[{"node_id": nid, "version": v.version} for nid, v in observed],
            latest=latest.version if latest else None,
        )
        if latest is not None:
            self._read_repair(key, latest)
        return latest

    def _read_repair(self, key: str, latest: QuorumValue) -> None:
        repaired = []
        for node in self._topology.healthy():
            current = node.data.get(key)
            if current is None or current.version < latest.version:
                self.send(REPAIR_SOURCE, node.id, Repair(key, latest.value, latest.version))
                repaired.append(node.id)
        if repaired:
            self.log_event(
                "read_repair",
                f"Read repair for {key} (v{latest.version})",
                key=key,
                repaired_nodes=repaired,
            )

    def _apply(self, node: QuorumNode, key: str, value: Any, version: int) -> bool:
        existing = node.data.get(key)
        if existing is not None and existing.version >= version:
            return False
        node.data[key] = QuorumValue(value, version, self.now)
        node.version = max(node.version, version)
        return True

    def _handle_replicate(self, message: Message) -> None:
        payload: Replicate = message.payload
        self._apply(self._topology.get(message.target), payload.key, payload.value, payload.version)
        self._confirmed_acks += 1

    def _handle_repair(self, message: Message) -> None:
        payload: Repair = message.payload
        if self._apply(self._topology.get(message.target), payload.key, payload.value, payload.version):
            self._repairs_applied += 1
            self.log_event(
                "repair_applied",
                f"{message.target} repaired {payload.key} to v{payload.version}",
                node_id=message.target,
                key=payload.key,
            )
