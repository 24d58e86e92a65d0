"""Replicas holding a G-Counter, an OR-Set and an RGA side by side.

Local operations touch only the local replica. ``sync`` sends a Sync
message; delivering it merges the two replicas in both directions, so
after a sync both ends hold the join of their states. ``sync_all`` syncs
every pair once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from distlab.components.crdt.g_counter import GCounter
from distlab.components.crdt.or_set import ORSet
from distlab.components.crdt.rga import RGA
from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

DEFAULT_REPLICA_COUNT = 3


@dataclass
class CRDTReplica(Node):
    counter: GCounter = field(default_factory=lambda: GCounter(""))
    or_set: ORSet = field(default_factory=lambda: ORSet(""))
    rga: RGA = field(default_factory=lambda: RGA(""))


@dataclass(frozen=True)
class Sync:
    pass


@dataclass(frozen=True)
class CRDTStats:
    """Divergence is counted against replica ``R0``.

    Attributes:
        divergent_g_counter: Replicas whose counter total differs from R0's.
        divergent_or_set: Replicas whose OR-Set membership differs from R0's.
        divergent_rga: Replicas whose visible sequence differs from R0's.
    """

    replica_count: int = 0
    divergent_g_counter: int = 0
    divergent_or_set: int = 0
    divergent_rga: int = 0

    @property
    def converged(self) -> bool:
        return not (self.divergent_g_counter or self.divergent_or_set or self.divergent_rga)


class CRDTReplicationEngine(ProtocolEngine):
    """Replicas ``R0`` .. ``R{n-1}``."""

    message_prefix = "crdt"

    def __init__(self, replica_count: int = DEFAULT_REPLICA_COUNT, *, name: str | None = None, clock=None, seed: int | None = None):
        if replica_count < 1:
            raise ValueError(f"replica_count must be >= 1, got {replica_count}")
        self._replica_count = replica_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        ids = [f"R{i}" for i in range(self._replica_count)]
        self._topology = Topology(
            CRDTReplica(rid, counter=GCounter(rid, ids), or_set=ORSet(rid), rga=RGA(rid)) for rid in ids
        )

    def _message_handlers(self):
        return {Sync: self._handle_sync}

    def _instructions(self):
        return {
            "increment": self.increment,
            "add_element": self.add_element,
            "remove_element": self.remove_element,
            "insert_text": self.insert_text,
            "delete_text": self.delete_text,
            "sync": self.sync,
            "sync_all": self.sync_all,
        }

    def _can_receive(self, message: Message) -> bool:
        return self._topology.is_healthy(message.source) and self._topology.is_healthy(message.target)

    @property
    def replicas(self) -> list[CRDTReplica]:
        return list(self._topology)

    @property
    def stats(self) -> CRDTStats:
        replicas = list(self._topology)
        base, rest = replicas[0], replicas[1:]
        return CRDTStats(
            replica_count=len(replicas),
            divergent_g_counter=sum(1 for r in rest if r.counter.value != base.counter.value),
            divergent_or_set=sum(1 for r in rest if r.or_set.elements != base.or_set.elements),
            divergent_rga=sum(1 for r in rest if r.rga.value != base.rga.value),
        )

    def _local(self, replica_id: str, operation: str) -> CRDTReplica | None:
        replica = self._topology.get(replica_id)
        if replica is not None and not replica.is_healthy:
            self.log_event(f"{operation}_failed", f"{replica_id} is down", replica_id=replica_id)
            return None
        return replica

    def increment(self, replica_id: str) -> None:
        replica = self._local(replica_id, "gcounter_inc")
        if replica is None:
            return
        replica.counter.increment()
        self.log_event("gcounter_inc", f"{replica_id} increments", replica_id=replica_id, value=replica.counter.value)

    def add_element(self, replica_id: str, value: str) -> None:
        replica = self._local(replica_id, "orset_add")
        if replica is None:
            return
        tag = replica.or_set.add(value)
        self.log_event("orset_add", f"{replica_id} adds {value}", replica_id=replica_id, value=value, tag=tag)

    def remove_element(self, replica_id: str, value: str) -> None:
        replica = self._local(replica_id, "orset_remove")
        if replica is None:
            return
        tags = replica.or_set.remove(value)
        self.log_event("orset_remove", f"{replica_id} removes {value}", replica_id=replica_id, value=value, tags=sorted(tags))

    def insert_text(self, replica_id: str, value: str, after_id: str | None = None) -> str | None:
        """Insert ``value`` into ``replica_id``'s sequence and return the element id."""
        replica = self._local(replica_id, "rga_insert")
        if replica is None:
            return None
        element_id = replica.rga.insert(value, after_id)
        self.log_event("rga_insert", f"{replica_id} inserts {value}", replica_id=replica_id, id=element_id, value=value)
        return element_id

    def delete_text(self, replica_id: str, element_id: str) -> None:
        replica = self._local(replica_id, "rga_remove")
        if replica is None or not replica.rga.delete(element_id):
            return
        self.log_event("rga_remove", f"{replica_id} removes {element_id}", replica_id=replica_id, element_id=element_id)

    def sync(self, source: str, target: str) -> None:
        if source == target or source not in self._topology or target not in self._topology:
            return
        self.send(source, target, Sync())
        self.log_event("sync_send", f"Sync {source} -> {target}", source=source, target=target)

    def sync_all(self) -> None:
        ids = self._topology.ids()
        for i, source in enumerate(ids):
            for target in ids[i + 1 :]:
                self.sync(source, target)

    def _handle_sync(self, message: Message) -> None:
        a = self._topology.get(message.source)
        b = self._topology.get(message.target)
        for left, right in ((b, a), (a, b)):
            left.counter.merge(right.counter)
            left.or_set.merge(right.or_set)
            left.rga.merge(right.rga)
        logger.debug("[%s] merged %s <-> %s", self.name, a.id, b.id)
        self.log_event("sync_merge", f"{a.id} and {b.id} merged", source=a.id, target=b.id)
